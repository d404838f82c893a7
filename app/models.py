import uuid
from datetime import datetime, timedelta, timezone
from sqlalchemy import Column, String, DateTime, BigInteger, Text, Index

from app.config import settings
from app.database import Base


def generate_uuid():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc)


def default_expiry():
    return utc_now() + timedelta(days=settings.MEDIA_TTL_DAYS)


class GeneratedMedia(Base):
    """A generated artifact stored in object storage, keyed by route path and prompt hash.

    Rows are written once by the generation pipeline and removed by the
    cleanup worker after expires_at. Nothing updates them in place.
    """
    __tablename__ = "generated_media"

    id = Column(String, primary_key=True, default=generate_uuid)
    endpoint_path = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    prompt_hash = Column(String(64), nullable=False)
    s3_key = Column(String(512), nullable=False)
    s3_url = Column(Text, nullable=False)
    media_type = Column(String(32), nullable=False)
    file_size_bytes = Column(BigInteger, nullable=False, default=0)
    payer_address = Column(String(42), nullable=True)
    payment_tx = Column(String(66), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    expires_at = Column(DateTime(timezone=True), nullable=False, default=default_expiry, index=True)

    __table_args__ = (
        Index("idx_generated_media_cache_lookup", "prompt_hash", "endpoint_path"),
    )

    def __repr__(self) -> str:
        return f"<GeneratedMedia {self.endpoint_path} {self.prompt_hash[:12]} {self.s3_key}>"
