"""ImportJob model: checkpoint row of a school CSV import."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from schools_api.models.base import Base, TimestampMixin, UUIDMixin


class ImportJob(Base, UUIDMixin, TimestampMixin):
    """Tracks a resumable, batch-by-batch school import."""

    __tablename__ = "import_jobs"

    job_type: Mapped[str] = mapped_column(String(30), nullable=False, default="schools_csv", index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", server_default="queued", index=True
    )

    # Record counts
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    processed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    inserted_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    skipped_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    failed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Checkpoint
    current_batch: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1500, server_default="1500")
    cursor_line: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Error tracking
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
