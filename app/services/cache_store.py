"""
Cache store - content-addressed lookup of generated artifacts.

Records are keyed by (endpoint path, prompt hash). The store only inserts,
reads, and deletes: there is no update path, and expired rows are never
returned even before the cleanup worker has removed them.
"""
import hashlib
import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import StorageError
from app.models import GeneratedMedia, utc_now

logger = logging.getLogger(__name__)


def normalize_prompt(prompt: str) -> str:
    return prompt.strip().lower()


def prompt_hash(prompt: str) -> str:
    """SHA-256 hex digest of the normalized prompt."""
    return hashlib.sha256(normalize_prompt(prompt).encode()).hexdigest()


class CacheStore:
    """Service for generated-media cache records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, endpoint_path: str, content_hash: str) -> Optional[GeneratedMedia]:
        """
        Get the most recent unexpired record for a route and prompt hash.
        """
        try:
            result = await self.db.execute(
                select(GeneratedMedia)
                .where(
                    GeneratedMedia.prompt_hash == content_hash,
                    GeneratedMedia.endpoint_path == endpoint_path,
                    GeneratedMedia.expires_at > utc_now(),
                )
                .order_by(GeneratedMedia.created_at.desc())
                .limit(1)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Cache lookup failed: {e}") from e
        return result.scalar_one_or_none()

    async def insert(self, record: GeneratedMedia) -> str:
        """
        Persist a new record and return its id.

        Raises:
            StorageError: On constraint violation or lost connectivity
        """
        try:
            self.db.add(record)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Failed to insert media record: {e}") from e
        return record.id

    async def find_expired(self) -> list[GeneratedMedia]:
        """All records whose expiry has passed."""
        try:
            result = await self.db.execute(
                select(GeneratedMedia).where(GeneratedMedia.expires_at <= utc_now())
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Failed to query expired media: {e}") from e
        return list(result.scalars().all())

    async def delete_by_id(self, record_id: str) -> None:
        """Delete a record. Deleting a missing id is not an error."""
        try:
            await self.db.execute(delete(GeneratedMedia).where(GeneratedMedia.id == record_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Failed to delete media record {record_id}: {e}") from e
