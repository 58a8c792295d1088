"""Shared fixtures for session pipeline tests.

Provides:
- InMemoryPipelineRepository: test double mirroring SessionPipelineRepository
- FakeTranscriptionClient: scripted Deepgram stand-in (responses or errors)
- FakeLLMService: scripted completion service counting calls
- RecordingSleep: captures retry delays without sleeping
- Helpers for building sessions and Deepgram-shaped responses

No database or network dependency.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from src.app.sessions.errors import PersistenceError, SessionNotFoundError
from src.app.sessions.schemas import (
    ChannelIngestion,
    FlagType,
    IngestionStatus,
    NotificationRecord,
    NotificationType,
    OperatorAccount,
    PipelineSession,
    SafetyFlag,
    SessionCreate,
    SessionKind,
    SessionStage,
    TranscriptSegment,
)

NOW = datetime.now(timezone.utc)


# ── In-Memory Repository Test Double ─────────────────────────────────────────


class InMemoryPipelineRepository:
    """In-memory test double for SessionPipelineRepository.

    Mirrors the repository interface and records write calls so tests can
    assert on idempotency. Failure injection:
    - fail_segment_batches: 1-based insert_segments call numbers that raise
    - fail_notification_recipients: recipient ids whose insert raises
    - fail_flag_inserts: insert_flags raises
    """

    def __init__(self) -> None:
        self.sessions: dict[str, PipelineSession] = {}
        self.segments: list[TranscriptSegment] = []
        self.flags: list[SafetyFlag] = []
        self.notifications: list[NotificationRecord] = []
        self.operators: dict[str, OperatorAccount] = {}
        self.ingestions: dict[tuple[str, str], ChannelIngestion] = {}
        self.ingestion_history: list[tuple[str, IngestionStatus]] = []

        self.summary_writes = 0
        self.segment_insert_calls = 0
        self.fail_segment_batches: set[int] = set()
        self.fail_notification_recipients: set[str] = set()
        self.fail_flag_inserts = False

    # Sessions

    async def create_session(self, data: SessionCreate) -> PipelineSession:
        session = PipelineSession(
            id=uuid.uuid4(),
            session_kind=data.session_kind,
            tutor_id=data.tutor_id,
            learner_id=data.learner_id,
            guardian_id=data.guardian_id,
            recurring_engagement_id=data.recurring_engagement_id,
            expected_speaker_count=data.expected_speaker_count,
            created_at=NOW,
            updated_at=NOW,
        )
        self.sessions[str(session.id)] = session
        return session

    async def get_session(self, session_id: str) -> PipelineSession | None:
        return self.sessions.get(session_id)

    async def set_summary(self, session_id: str, summary: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None or session.has_summary:
            return False
        self.sessions[session_id] = session.model_copy(
            update={"summary": summary, "updated_at": datetime.now(timezone.utc)}
        )
        self.summary_writes += 1
        return True

    async def update_stage(self, session_id: str, stage: SessionStage) -> PipelineSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        updated = session.model_copy(
            update={"stage": stage, "updated_at": datetime.now(timezone.utc)}
        )
        self.sessions[session_id] = updated
        return updated

    # Segments

    async def insert_segments(self, segments: list[TranscriptSegment]) -> int:
        self.segment_insert_calls += 1
        if self.segment_insert_calls in self.fail_segment_batches:
            raise PersistenceError("insert_segments failed: simulated outage")
        self.segments.extend(segments)
        return len(segments)

    async def list_segments(self, session_id: str) -> list[TranscriptSegment]:
        # sorted() is stable, so insertion order breaks start_time ties
        return sorted(
            (s for s in self.segments if str(s.session_id) == session_id),
            key=lambda s: s.start_time,
        )

    async def has_segments(self, session_id: str, speaker_id: str) -> bool:
        return any(
            str(s.session_id) == session_id and s.speaker_id == speaker_id
            for s in self.segments
        )

    async def count_speakers(self, session_id: str) -> int:
        return len({s.speaker_id for s in self.segments if str(s.session_id) == session_id})

    # Channel ingestion status

    async def set_ingestion_status(
        self,
        session_id: str,
        speaker_id: str,
        status: IngestionStatus,
        segment_count: int = 0,
        error: str | None = None,
    ) -> ChannelIngestion:
        record = ChannelIngestion(
            session_id=uuid.UUID(session_id),
            speaker_id=speaker_id,
            status=status,
            segment_count=segment_count,
            error=error,
            updated_at=datetime.now(timezone.utc),
        )
        self.ingestions[(session_id, speaker_id)] = record
        self.ingestion_history.append((speaker_id, status))
        return record

    async def list_ingestions(self, session_id: str) -> list[ChannelIngestion]:
        return sorted(
            (r for (sid, _), r in self.ingestions.items() if sid == session_id),
            key=lambda r: r.speaker_id,
        )

    # Flags

    async def insert_flags(self, flags: list[SafetyFlag]) -> None:
        if self.fail_flag_inserts:
            raise PersistenceError("insert_flags failed: simulated outage")
        self.flags.extend(flags)

    async def list_flags(self, session_id: str) -> list[SafetyFlag]:
        return [f for f in self.flags if str(f.session_id) == session_id]

    async def list_unresolved_flag_types(self, session_id: str) -> set[FlagType]:
        return {
            f.flag_type
            for f in self.flags
            if str(f.session_id) == session_id and not f.resolved
        }

    # Notifications

    async def insert_notification(self, record: NotificationRecord) -> NotificationRecord:
        if record.recipient_id in self.fail_notification_recipients:
            raise PersistenceError("insert_notification failed: simulated outage")
        stored = record.model_copy(update={"created_at": datetime.now(timezone.utc)})
        self.notifications.append(stored)
        return stored

    async def has_notification(
        self, notification_type: NotificationType, session_id: str
    ) -> bool:
        return any(
            n.type == notification_type and str(n.session_id) == session_id
            for n in self.notifications
        )

    async def list_notifications(self, session_id: str) -> list[NotificationRecord]:
        return [n for n in self.notifications if str(n.session_id) == session_id]

    # Operators

    async def add_operator(self, account: OperatorAccount) -> OperatorAccount:
        self.operators[account.id] = account
        return account

    async def list_operator_ids(self) -> list[str]:
        return sorted(a.id for a in self.operators.values() if a.active)

    # Test helpers

    def notifications_of(self, notification_type: NotificationType) -> list[NotificationRecord]:
        return [n for n in self.notifications if n.type == notification_type]

    def add_session(self, **overrides: Any) -> PipelineSession:
        """Insert a session directly; defaults to a recurring T1/L1 session."""
        fields: dict[str, Any] = {
            "session_kind": SessionKind.RECURRING,
            "tutor_id": "T1",
            "learner_id": "L1",
            "recurring_engagement_id": "engagement-1",
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(overrides)
        session = PipelineSession(**fields)
        self.sessions[str(session.id)] = session
        return session

    def add_segment(
        self,
        session_id: str,
        speaker_id: str,
        start: float,
        text: str,
        end: float | None = None,
    ) -> TranscriptSegment:
        segment = TranscriptSegment(
            session_id=uuid.UUID(session_id),
            speaker_id=speaker_id,
            start_time=start,
            end_time=end if end is not None else start + 2.0,
            text=text,
        )
        self.segments.append(segment)
        return segment


# ── Provider Fakes ───────────────────────────────────────────────────────────


class FakeTranscriptionClient:
    """Returns scripted results in order; Exceptions in the script are raised."""

    def __init__(self, script: list[Any]) -> None:
        self._script = list(script)
        self.calls: list[dict[str, Any]] = []

    async def transcribe_url(self, audio_url: str, language: str | None = None) -> dict:
        self.calls.append({"audio_url": audio_url, "language": language})
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeLLMService:
    """Completion service double; ``failures`` leading calls raise ``error``."""

    def __init__(
        self,
        content: str = "The learner practised fractions and improved steadily.",
        failures: int = 0,
        error: Exception | None = None,
    ) -> None:
        self.content = content
        self.failures = failures
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def completion(self, messages: list[dict], **kwargs: Any) -> dict:
        self.calls.append({"messages": messages, **kwargs})
        if len(self.calls) <= self.failures:
            raise self.error
        return {"content": self.content, "model": "fake-model", "usage": {}}


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ── Response Builders ────────────────────────────────────────────────────────


def utterance_response(*utterances: tuple[float, float, str]) -> dict:
    """Deepgram-shaped response with utterance-level output."""
    return {
        "metadata": {"request_id": "req-1", "duration": 60.0},
        "results": {
            "utterances": [
                {"start": start, "end": end, "transcript": text, "confidence": 0.9}
                for start, end, text in utterances
            ],
            "channels": [],
        },
    }


def words_response(*words: tuple[float, float, str]) -> dict:
    """Deepgram-shaped response with word timestamps only."""
    return {
        "metadata": {"request_id": "req-2", "duration": 60.0},
        "results": {
            "channels": [
                {
                    "alternatives": [
                        {
                            "transcript": " ".join(w for _, _, w in words),
                            "words": [
                                {"word": w.lower(), "punctuated_word": w, "start": s, "end": e}
                                for s, e, w in words
                            ],
                        }
                    ]
                }
            ]
        },
    }


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repo() -> InMemoryPipelineRepository:
    return InMemoryPipelineRepository()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
