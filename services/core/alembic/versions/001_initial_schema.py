"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates the acquisition tables:
- acquisition_runs
- acquisition_run_logs
- leads
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Acquisition runs table
    op.create_table(
        "acquisition_runs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "running", "completed", "failed", "cancelled",
                name="run_status_enum",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("filters_json", sa.JSON, nullable=False),
        sa.Column("target_spec_json", sa.JSON, nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("current_stage", sa.String(64), nullable=True),
        sa.Column("cancel_requested", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("batches_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("batches_completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("submitted_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("found_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("accepted_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("errored_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("output_json", sa.JSON, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("ended_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("owner_id", "idempotency_key", name="uq_run_idempotency"),
    )
    op.create_index("idx_runs_status", "acquisition_runs", ["status", "started_at"])
    op.create_index("idx_runs_owner", "acquisition_runs", ["owner_id", "created_at"])

    # Run log table (append-only)
    op.create_table(
        "acquisition_run_logs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "run_id",
            sa.BigInteger,
            sa.ForeignKey("acquisition_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("stage", sa.String(64), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "level",
            sa.Enum("info", "warning", "error", name="run_log_level_enum"),
            nullable=False,
            server_default="info",
        ),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("run_id", "sequence", name="uq_run_log_sequence"),
    )

    # Leads table
    op.create_table(
        "leads",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("linkedin_url", sa.String(512), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("company_domain", sa.String(255), nullable=True),
        sa.Column("company_website", sa.String(512), nullable=True),
        sa.Column("company_profile", sa.Text, nullable=True),
        sa.Column("fit_score", sa.Float, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="new"),
        sa.Column("source", sa.String(64), nullable=False, server_default="acquisition_run"),
        sa.Column(
            "run_id",
            sa.BigInteger,
            sa.ForeignKey("acquisition_runs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("outreach_message", sa.Text, nullable=True),
        sa.Column("custom_data_json", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("email", "owner_id", name="uq_lead_email_owner"),
    )
    op.create_index("idx_leads_owner", "leads", ["owner_id", "created_at"])
    op.create_index("idx_leads_run", "leads", ["run_id"])


def downgrade() -> None:
    op.drop_table("leads")
    op.drop_table("acquisition_run_logs")
    op.drop_table("acquisition_runs")
