"""Add import_jobs and schools tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create import_jobs table
    op.create_table(
        "import_jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.String(30), nullable=False, server_default="schools_csv"),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("total_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("inserted_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_records", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_batch", sa.Integer, nullable=False, server_default="0"),
        sa.Column("batch_size", sa.Integer, nullable=False, server_default="1500"),
        sa.Column("cursor_line", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_details", JSONB, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_import_jobs_job_type", "import_jobs", ["job_type"])
    op.create_index("ix_import_jobs_status", "import_jobs", ["status"])
    op.create_index("ix_import_jobs_created_at", "import_jobs", ["created_at"])

    # Create schools table
    op.create_table(
        "schools",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(300), nullable=False, unique=True),
        sa.Column("source_name", sa.String(255), nullable=True),
        # Address
        sa.Column("postal_code", sa.String(9), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("neighborhood", sa.String(120), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("state", sa.String(2), nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        # Contact
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        # Classification
        sa.Column("school_type", sa.String(20), nullable=True),
        sa.Column("education_level", sa.String(30), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        # Import provenance
        sa.Column("enriched_by_ai", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("import_fingerprint", sa.String(40), nullable=True),
        sa.Column(
            "imported_by_job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("import_jobs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_schools_postal_code", "schools", ["postal_code"])
    op.create_index("ix_schools_city", "schools", ["city"])
    op.create_index("ix_schools_state", "schools", ["state"])
    op.create_index("ix_schools_created_at", "schools", ["created_at"])
    op.create_index("ix_schools_import_fingerprint", "schools", ["import_fingerprint"])


def downgrade() -> None:
    op.drop_table("schools")
    op.drop_table("import_jobs")
