"""Session pipeline persistence models.

Six SQLAlchemy models:
- SessionModel: Tutoring session with the mutable summary field and lifecycle stage
- TranscriptSegmentModel: Append-only per-speaker transcript segments
- SafetyFlagModel: Append-only content-safety findings (resolved toggled externally)
- NotificationModel: Append-only notification rows, queried for dedupe by type + session
- OperatorAccountModel: Accounts that receive critical-flag escalations
- ChannelIngestionModel: Processing/completed/failed status per speaker channel

Uses portable column types (Uuid, JSON) with Python-side defaults so the same
models run against PostgreSQL in production and SQLite in tests. No foreign
key constraints (application-level referential integrity via repository).
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import Base


class SessionModel(Base):
    """Tutoring session tracked by the post-session pipeline.

    ``summary`` is empty until the summarization stage writes it exactly
    once. ``stage`` tracks the finalization lifecycle.
    """

    __tablename__ = "pipeline_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    tutor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    learner_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    guardian_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    recurring_engagement_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    summary: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    stage: Mapped[str] = mapped_column(
        String(30),
        default="collecting",
        server_default=text("'collecting'"),
    )
    expected_speaker_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class TranscriptSegmentModel(Base):
    """One transcribed segment for one speaker channel. Never updated."""

    __tablename__ = "transcript_segments"
    __table_args__ = (
        Index("ix_segments_session_start", "session_id", "start_time"),
        Index("ix_segments_session_speaker", "session_id", "speaker_id"),
    )

    # Autoincrement key gives a stable tiebreak for equal start times
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    speaker_id: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time: Mapped[float] = mapped_column(Float, nullable=False)
    end_time: Mapped[float] = mapped_column(Float, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SafetyFlagModel(Base):
    """Content-safety flag awaiting operator review."""

    __tablename__ = "safety_flags"
    __table_args__ = (
        Index("ix_safety_flags_session_type", "session_id", "flag_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    session_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    flag_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NotificationModel(Base):
    """Notification row handed to the multi-channel delivery subsystem."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_type_session", "type", "session_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_data: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    is_read: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class OperatorAccountModel(Base):
    """Operator/administrator account receiving escalation notifications."""

    __tablename__ = "operator_accounts"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), default="", server_default=text("''"))
    active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default=text("true"),
    )


class ChannelIngestionModel(Base):
    """Latest ingestion attempt per (session, speaker) channel."""

    __tablename__ = "channel_ingestions"

    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    speaker_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    segment_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default=text("0"),
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
