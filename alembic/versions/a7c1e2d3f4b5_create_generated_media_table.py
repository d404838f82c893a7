"""create generated_media table

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c1e2d3f4b5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create generated_media table for the artifact cache."""
    op.create_table(
        'generated_media',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('endpoint_path', sa.String(length=255), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('prompt_hash', sa.String(length=64), nullable=False),
        sa.Column('s3_key', sa.String(length=512), nullable=False),
        sa.Column('s3_url', sa.Text(), nullable=False),
        sa.Column('media_type', sa.String(length=32), nullable=False),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payer_address', sa.String(length=42), nullable=True),
        sa.Column('payment_tx', sa.String(length=66), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_generated_media_cache_lookup', 'generated_media', ['prompt_hash', 'endpoint_path'], unique=False)
    op.create_index(op.f('ix_generated_media_expires_at'), 'generated_media', ['expires_at'], unique=False)


def downgrade() -> None:
    """Remove generated_media table."""
    op.drop_index(op.f('ix_generated_media_expires_at'), table_name='generated_media')
    op.drop_index('idx_generated_media_cache_lookup', table_name='generated_media')
    op.drop_table('generated_media')
