"""School model: a school imported from a CSV list."""

import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Index, String, Uuid, false, true
from sqlalchemy.orm import Mapped, mapped_column

from schools_api.models.base import Base, TimestampMixin, UUIDMixin


class School(Base, UUIDMixin, TimestampMixin):
    """A school, unique by slug."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    source_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Address
    postal_code: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(String(120), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    state: Mapped[str | None] = mapped_column(String(2), nullable=True, index=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Contact
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Classification
    school_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    education_level: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    # Import provenance
    enriched_by_ai: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    import_fingerprint: Mapped[str | None] = mapped_column(String(40), nullable=True)
    imported_by_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (Index("ix_schools_import_fingerprint", "import_fingerprint"),)
