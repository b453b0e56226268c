"""
SQLAlchemy models for resume state.

A migration session records its declared key total and the last key it
completed; each completed key is one row in ``processed_keys``.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ResumeSession(Base):
    """One resumable migration run."""

    __tablename__ = "resume_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    total_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="When the run first started"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    checksum: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="SHA256 over the processed key count and last key"
    )

    def __repr__(self) -> str:
        return f"<ResumeSession(id={self.id}, total_keys={self.total_keys})>"


class ProcessedKey(Base):
    """A key whose transfer completed in a resumable run."""

    __tablename__ = "processed_keys"
    __table_args__ = (UniqueConstraint("session_id", "key", name="uq_processed_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("resume_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessedKey(key={self.key!r})>"
