"""Pydantic v2 schemas for the post-session pipeline domain.

Defines the data contracts for tutoring sessions, transcript segments, safety
flags, notification records, and operator accounts. Every pipeline stage
(ingestion, aggregation, safety analysis, summarization, dispatch) imports
from this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class SessionKind(str, Enum):
    """One-off trial session vs. part of an ongoing recurring engagement."""

    TRIAL = "trial"
    RECURRING = "recurring"


class SessionStage(str, Enum):
    """Finalization lifecycle of a session, strictly forward-moving."""

    COLLECTING = "collecting"
    READY_TO_AGGREGATE = "ready_to_aggregate"
    AGGREGATED = "aggregated"
    ANALYZED = "analyzed"
    SUMMARIZED = "summarized"
    NOTIFIED = "notified"

    @property
    def rank(self) -> int:
        """Position of this stage in the lifecycle (0 = collecting)."""
        return list(SessionStage).index(self)


class FlagType(str, Enum):
    """Categories of content-safety findings."""

    PAYMENT_BYPASS_ATTEMPT = "payment_bypass_attempt"
    INAPPROPRIATE_LANGUAGE = "inappropriate_language"
    CONTACT_INFORMATION_SHARED = "contact_information_shared"
    SESSION_QUALITY_ISSUE = "session_quality_issue"


class Severity(str, Enum):
    """Flag severity; only CRITICAL triggers operator escalation."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NotificationType(str, Enum):
    """Notification types written by the pipeline."""

    SESSION_SUMMARY_READY = "session_summary_ready"
    CRITICAL_SESSION_FLAG = "critical_session_flag"


class IngestionStatus(str, Enum):
    """Progress of one speaker channel through transcription and storage."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ── Session ──────────────────────────────────────────────────────────────────


class PipelineSession(BaseModel):
    """A tutoring session as seen by the post-session pipeline."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    session_kind: SessionKind
    tutor_id: str
    learner_id: str | None = None
    guardian_id: str | None = None
    recurring_engagement_id: str | None = None
    summary: str = ""
    stage: SessionStage = SessionStage.COLLECTING
    expected_speaker_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def participant_ids(self) -> list[str]:
        """Distinct non-null participant ids, tutor first."""
        seen: list[str] = []
        for pid in (self.tutor_id, self.learner_id, self.guardian_id):
            if pid and pid not in seen:
                seen.append(pid)
        return seen

    @property
    def has_summary(self) -> bool:
        return bool(self.summary and self.summary.strip())

    @property
    def is_linked_to_engagement(self) -> bool:
        """Recurring session attached to an ongoing recurring engagement."""
        return self.session_kind == SessionKind.RECURRING and bool(
            self.recurring_engagement_id
        )


# ── Transcript ───────────────────────────────────────────────────────────────


class NormalizedSegment(BaseModel):
    """Provider-independent transcript segment produced by normalization."""

    start: float = Field(ge=0.0, description="Segment start offset in seconds")
    end: float = Field(ge=0.0, description="Segment end offset in seconds")
    text: str
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class TranscriptSegment(BaseModel):
    """A persisted, immutable unit of transcribed speech for one speaker."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    session_id: uuid.UUID
    speaker_id: str
    start_time: float
    end_time: float
    text: str
    confidence: float | None = None
    created_at: datetime | None = None


class ChannelIngestion(BaseModel):
    """Latest ingestion attempt for one (session, speaker) channel.

    ``segment_count`` is the number of segments stored by the attempt;
    after a failed batch it reflects the partial insert.
    """

    model_config = ConfigDict(from_attributes=True)

    session_id: uuid.UUID
    speaker_id: str
    status: IngestionStatus
    segment_count: int = 0
    error: str | None = None
    updated_at: datetime | None = None


# ── Safety Flags ─────────────────────────────────────────────────────────────


class SafetyFlag(BaseModel):
    """A suspected policy-relevant pattern detected in a session transcript."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    session_id: uuid.UUID
    session_kind: SessionKind
    flag_type: FlagType
    severity: Severity
    description: str
    excerpt: str | None = None
    resolved: bool = False
    created_at: datetime


# ── Notifications ────────────────────────────────────────────────────────────


class NotificationRecord(BaseModel):
    """A notification row consumed by the downstream delivery subsystem."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    recipient_id: str
    session_id: uuid.UUID | None = None
    type: NotificationType
    title: str
    message: str
    metadata: dict = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime | None = None


class OperatorAccount(BaseModel):
    """An operator/administrator account that receives escalations."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: str = ""
    active: bool = True


# ── Request/Create Models ────────────────────────────────────────────────────


class SessionCreate(BaseModel):
    """Request schema for registering a session with the pipeline."""

    session_kind: SessionKind
    tutor_id: str
    learner_id: str | None = None
    guardian_id: str | None = None
    recurring_engagement_id: str | None = None
    expected_speaker_count: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def check_engagement_link(self) -> "SessionCreate":
        """Recurring sessions need an engagement id; trial sessions must not have one."""
        if self.session_kind == SessionKind.RECURRING and not self.recurring_engagement_id:
            raise ValueError("recurring sessions require recurring_engagement_id")
        if self.session_kind == SessionKind.TRIAL and self.recurring_engagement_id:
            raise ValueError("trial sessions cannot have a recurring_engagement_id")
        return self


class IngestRequest(BaseModel):
    """Request schema for ingesting one speaker channel's recording."""

    speaker_id: str = Field(min_length=1)
    audio_url: str = Field(min_length=1)
    language: str | None = None
