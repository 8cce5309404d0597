from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vidvault.db.base import Base
from vidvault.importer.filenames import format_bytes, format_duration

STATUS_PENDING = "pending"
STATUS_UPLOADING = "uploading"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

VIDEO_STATUSES = (
    STATUS_PENDING,
    STATUS_UPLOADING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
)

# JSON key holding the source system's id; uniqueness is enforced on it below.
PROVENANCE_KEY = "vimeo_id"


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (
        CheckConstraint("size >= 0", name="ck_videos_size_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'uploading', 'processing', 'completed', 'failed')",
            name="ck_videos_status",
        ),
        # Duplicate guard for imports: one row per source video id.
        Index(
            "uq_videos_metadata_vimeo_id",
            text("(metadata ->> 'vimeo_id')"),
            unique=True,
            postgresql_where=text("(metadata ->> 'vimeo_id') IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)

    s3_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    s3_bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    s3_region: Mapped[str] = mapped_column(String(64), nullable=False)

    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    # Multipart upload session; only set while status == uploading.
    upload_id: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    share_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    shared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # `metadata` is reserved on declarative classes, hence the attribute name.
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)

    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="videos")
    tags = relationship("Tag", secondary="video_tags", back_populates="videos", lazy="selectin")

    @property
    def formatted_size(self) -> str:
        return format_bytes(self.size or 0)

    @property
    def formatted_duration(self) -> str | None:
        return format_duration(self.duration)

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def provenance_id(self) -> str | None:
        value = (self.metadata_ or {}).get(PROVENANCE_KEY)
        return str(value) if value is not None else None


# Register related mappers so string-based relationships resolve.
from vidvault.db.models import tag as _tag_model  # noqa: E402,F401
from vidvault.db.models import user as _user_model  # noqa: E402,F401
