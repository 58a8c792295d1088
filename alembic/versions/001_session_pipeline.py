"""Create session pipeline tables.

Revision ID: 001_session_pipeline
Revises:
Create Date: 2026-10-18

Creates five tables for the post-session pipeline:
- pipeline_sessions: Sessions with the write-once summary and lifecycle stage
- transcript_segments: Append-only per-speaker segments (seq gives a stable
  tiebreak for equal start times)
- safety_flags: Append-only content-safety findings
- notifications: Notification rows, queried for dedupe by type + session
- operator_accounts: Recipients of critical-flag escalations

No foreign key constraints (application-level referential integrity via
repository).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_session_pipeline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── pipeline_sessions table ──────────────────────────────────────────

    op.create_table(
        "pipeline_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_kind", sa.String(20), nullable=False),
        sa.Column("tutor_id", sa.String(100), nullable=False),
        sa.Column("learner_id", sa.String(100), nullable=True),
        sa.Column("guardian_id", sa.String(100), nullable=True),
        sa.Column("recurring_engagement_id", sa.String(100), nullable=True),
        sa.Column("summary", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column(
            "stage",
            sa.String(30),
            server_default=sa.text("'collecting'"),
            nullable=False,
        ),
        sa.Column("expected_speaker_count", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── transcript_segments table ────────────────────────────────────────

    op.create_table(
        "transcript_segments",
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("speaker_id", sa.String(100), nullable=False),
        sa.Column("start_time", sa.Float(), nullable=False),
        sa.Column("end_time", sa.Float(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_segments_session_start",
        "transcript_segments",
        ["session_id", "start_time"],
    )
    op.create_index(
        "ix_segments_session_speaker",
        "transcript_segments",
        ["session_id", "speaker_id"],
    )

    # ── safety_flags table ───────────────────────────────────────────────

    op.create_table(
        "safety_flags",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_id", sa.Uuid(), nullable=False),
        sa.Column("session_kind", sa.String(20), nullable=False),
        sa.Column("flag_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("resolved", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_safety_flags_session_type",
        "safety_flags",
        ["session_id", "flag_type"],
    )

    # ── notifications table ──────────────────────────────────────────────

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_id", sa.String(100), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_notifications_type_session",
        "notifications",
        ["type", "session_id"],
    )

    # ── operator_accounts table ──────────────────────────────────────────

    op.create_table(
        "operator_accounts",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("display_name", sa.String(200), server_default=sa.text("''"), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("operator_accounts")
    op.drop_index("ix_notifications_type_session", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_safety_flags_session_type", table_name="safety_flags")
    op.drop_table("safety_flags")
    op.drop_index("ix_segments_session_speaker", table_name="transcript_segments")
    op.drop_index("ix_segments_session_start", table_name="transcript_segments")
    op.drop_table("transcript_segments")
    op.drop_table("pipeline_sessions")
