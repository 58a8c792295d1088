"""Track ingestion status per speaker channel.

Revision ID: 002_channel_ingestions
Revises: 001_session_pipeline
Create Date: 2026-10-18

Adds channel_ingestions: one row per (session_id, speaker_id) holding the
latest ingestion attempt's status (processing, completed, failed), the number
of segments it stored, and the failure reason.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_channel_ingestions"
down_revision: Union[str, None] = "001_session_pipeline"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "channel_ingestions",
        sa.Column("session_id", sa.Uuid(), primary_key=True),
        sa.Column("speaker_id", sa.String(100), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("segment_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("channel_ingestions")
