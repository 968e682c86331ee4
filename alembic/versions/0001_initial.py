"""Initial schema: users, records, certificates, challenges, stage jobs, reconciliation flag.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


DNS_RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "TXT")
CERTIFICATE_STATUSES = ("ORDERING", "CHALLENGES_PROVISIONED", "VERIFYING", "ISSUED", "FAILED")
JOB_STATES = ("QUEUED", "RUNNING", "COMPLETED", "FAILED")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("username", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "dns_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "username",
            sa.String(64),
            sa.ForeignKey("users.username", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.Enum(*DNS_RECORD_TYPES, name="dns_record_type"), nullable=False),
        sa.Column("subdomain", sa.String(190), nullable=False),
        sa.Column("value", sa.String(1024), nullable=False),
        sa.Column("ports", sa.Text(), nullable=True),
        sa.Column("course", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_dns_records_expires_at", "dns_records", ["expires_at"])
    op.create_index("ix_dns_records_owner_subdomain", "dns_records", ["username", "subdomain"])
    op.create_index(
        "uq_dns_records_cname_owner_subdomain",
        "dns_records",
        ["username", "subdomain"],
        unique=True,
        postgresql_where=sa.text("type = 'CNAME'"),
    )

    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "username",
            sa.String(64),
            sa.ForeignKey("users.username", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("root_domain", sa.String(253), nullable=False),
        sa.Column("status", sa.Enum(*CERTIFICATE_STATUSES, name="certificate_status"), nullable=False),
        sa.Column("order_url", sa.Text(), nullable=True),
        sa.Column("private_key_pem", sa.Text(), nullable=True),
        sa.Column("certificate_pem", sa.Text(), nullable=True),
        sa.Column("valid_from", sa.DateTime(), nullable=True),
        sa.Column("valid_to", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_certificates_username", "certificates", ["username"])
    op.create_index("ix_certificates_status", "certificates", ["status"])

    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "certificate_id",
            sa.Integer(),
            sa.ForeignKey("certificates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("domain", sa.String(253), nullable=False),
        sa.Column("challenge_key", sa.String(255), nullable=False),
        sa.Column("challenge_url", sa.Text(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_challenges_certificate_id", "challenges", ["certificate_id"])

    op.create_table(
        "stage_jobs",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("stage", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("state", sa.Enum(*JOB_STATES, name="job_state"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("run_after", sa.DateTime(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_stage_jobs_stage", "stage_jobs", ["stage"])
    op.create_index("ix_stage_jobs_lease_expires_at", "stage_jobs", ["lease_expires_at"])
    op.create_index("ix_stage_jobs_due_lookup", "stage_jobs", ["state", "run_after"])

    reconciliation_state = op.create_table(
        "reconciliation_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("needed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reconciled_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Start flagged so the first reconciler pass syncs the provider
    op.bulk_insert(reconciliation_state, [{"id": 1, "needed": True, "generation": 1}])


def downgrade() -> None:
    op.drop_table("reconciliation_state")
    op.drop_index("ix_stage_jobs_due_lookup", table_name="stage_jobs")
    op.drop_index("ix_stage_jobs_lease_expires_at", table_name="stage_jobs")
    op.drop_index("ix_stage_jobs_stage", table_name="stage_jobs")
    op.drop_table("stage_jobs")
    op.drop_index("ix_challenges_certificate_id", table_name="challenges")
    op.drop_table("challenges")
    op.drop_index("ix_certificates_status", table_name="certificates")
    op.drop_index("ix_certificates_username", table_name="certificates")
    op.drop_table("certificates")
    op.drop_index("uq_dns_records_cname_owner_subdomain", table_name="dns_records")
    op.drop_index("ix_dns_records_owner_subdomain", table_name="dns_records")
    op.drop_index("ix_dns_records_expires_at", table_name="dns_records")
    op.drop_table("dns_records")
    op.drop_table("users")

    sa.Enum(name="job_state").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="certificate_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="dns_record_type").drop(op.get_bind(), checkfirst=True)
