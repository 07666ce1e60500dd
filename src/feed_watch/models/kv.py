"""
ORM model backing the key-value store.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from feed_watch.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueModel(Base):
    """One JSON document addressed by key."""

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<KeyValueModel(key='{self.key}')>"
