"""Session pipeline repository -- async persistence for every pipeline stage.

Provides SessionPipelineRepository with the session_factory callable pattern:
the factory is an async generator yielding AsyncSession instances, owned by
process bootstrap and injected here so stages can be tested against an
in-memory double.

Handles serialization between Pydantic schemas and SQLAlchemy models for
sessions, transcript segments, channel ingestion status, safety flags,
notifications, and operator accounts. Every datastore failure is raised as
PersistenceError.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import distinct, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.sessions.errors import PersistenceError, SessionNotFoundError
from src.app.sessions.models import (
    ChannelIngestionModel,
    NotificationModel,
    OperatorAccountModel,
    SafetyFlagModel,
    SessionModel,
    TranscriptSegmentModel,
)
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
    Severity,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_session(model: SessionModel) -> PipelineSession:
    """Convert SessionModel to PipelineSession schema."""
    return PipelineSession(
        id=model.id,
        session_kind=SessionKind(model.session_kind),
        tutor_id=model.tutor_id,
        learner_id=model.learner_id,
        guardian_id=model.guardian_id,
        recurring_engagement_id=model.recurring_engagement_id,
        summary=model.summary or "",
        stage=SessionStage(model.stage),
        expected_speaker_count=model.expected_speaker_count,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_segment(model: TranscriptSegmentModel) -> TranscriptSegment:
    """Convert TranscriptSegmentModel to TranscriptSegment schema."""
    return TranscriptSegment(
        id=model.id,
        session_id=model.session_id,
        speaker_id=model.speaker_id,
        start_time=model.start_time,
        end_time=model.end_time,
        text=model.text,
        confidence=model.confidence,
        created_at=model.created_at,
    )


def _model_to_ingestion(model: ChannelIngestionModel) -> ChannelIngestion:
    """Convert ChannelIngestionModel to ChannelIngestion schema."""
    return ChannelIngestion(
        session_id=model.session_id,
        speaker_id=model.speaker_id,
        status=IngestionStatus(model.status),
        segment_count=model.segment_count,
        error=model.error,
        updated_at=model.updated_at,
    )


def _model_to_flag(model: SafetyFlagModel) -> SafetyFlag:
    """Convert SafetyFlagModel to SafetyFlag schema."""
    return SafetyFlag(
        id=model.id,
        session_id=model.session_id,
        session_kind=SessionKind(model.session_kind),
        flag_type=FlagType(model.flag_type),
        severity=Severity(model.severity),
        description=model.description,
        excerpt=model.excerpt,
        resolved=model.resolved,
        created_at=model.created_at,
    )


def _model_to_notification(model: NotificationModel) -> NotificationRecord:
    """Convert NotificationModel to NotificationRecord schema."""
    return NotificationRecord(
        id=model.id,
        recipient_id=model.recipient_id,
        session_id=model.session_id,
        type=NotificationType(model.type),
        title=model.title,
        message=model.message,
        metadata=model.metadata_data or {},
        is_read=model.is_read,
        created_at=model.created_at,
    )


@contextmanager
def _db_errors(operation: str, **context: object) -> Iterator[None]:
    """Translate SQLAlchemy failures into PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            "repository.operation_failed",
            operation=operation,
            error=str(exc),
            **context,
        )
        raise PersistenceError(f"{operation} failed: {exc}") from exc


# ── Repository ──────────────────────────────────────────────────────────────


class SessionPipelineRepository:
    """Async persistence for sessions, segments, flags, and notifications.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Sessions ─────────────────────────────────────────────────────────

    async def create_session(self, data: SessionCreate) -> PipelineSession:
        """Register a session with the pipeline (stage=collecting)."""
        with _db_errors("create_session"):
            async for session in self._session_factory():
                model = SessionModel(
                    id=uuid.uuid4(),
                    session_kind=data.session_kind.value,
                    tutor_id=data.tutor_id,
                    learner_id=data.learner_id,
                    guardian_id=data.guardian_id,
                    recurring_engagement_id=data.recurring_engagement_id,
                    summary="",
                    stage=SessionStage.COLLECTING.value,
                    expected_speaker_count=data.expected_speaker_count,
                )
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return _model_to_session(model)

    async def get_session(self, session_id: str) -> PipelineSession | None:
        """Get a session by ID.

        Args:
            session_id: Session UUID string.

        Returns:
            PipelineSession if found, None otherwise.
        """
        with _db_errors("get_session", session_id=session_id):
            async for session in self._session_factory():
                stmt = select(SessionModel).where(
                    SessionModel.id == uuid.UUID(session_id)
                )
                result = await session.execute(stmt)
                model = result.scalar_one_or_none()
                if model is None:
                    return None
                return _model_to_session(model)

    async def set_summary(self, session_id: str, summary: str) -> bool:
        """Write the session summary if none is stored yet.

        The update is conditional on the stored summary being empty, so a
        summary that already exists is never overwritten.

        Returns:
            True if this call wrote the summary, False if one already existed.
        """
        with _db_errors("set_summary", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    update(SessionModel)
                    .where(
                        SessionModel.id == uuid.UUID(session_id),
                        or_(SessionModel.summary == "", SessionModel.summary.is_(None)),
                    )
                    .values(summary=summary, updated_at=datetime.now(timezone.utc))
                )
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount > 0

    async def update_stage(
        self, session_id: str, stage: SessionStage
    ) -> PipelineSession:
        """Persist a new lifecycle stage.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        with _db_errors("update_stage", session_id=session_id):
            async for session in self._session_factory():
                stmt = select(SessionModel).where(
                    SessionModel.id == uuid.UUID(session_id)
                )
                result = await session.execute(stmt)
                model = result.scalar_one_or_none()
                if model is None:
                    raise SessionNotFoundError(session_id)

                model.stage = stage.value
                model.updated_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(model)
                return _model_to_session(model)

    # ── Transcript Segments ──────────────────────────────────────────────

    async def insert_segments(self, segments: list[TranscriptSegment]) -> int:
        """Insert a batch of segments in a single transaction.

        Returns:
            Number of rows inserted.
        """
        if not segments:
            return 0
        with _db_errors("insert_segments", count=len(segments)):
            async for session in self._session_factory():
                session.add_all(
                    [
                        TranscriptSegmentModel(
                            id=s.id,
                            session_id=s.session_id,
                            speaker_id=s.speaker_id,
                            start_time=s.start_time,
                            end_time=s.end_time,
                            text=s.text,
                            confidence=s.confidence,
                        )
                        for s in segments
                    ]
                )
                await session.commit()
                return len(segments)

    async def list_segments(self, session_id: str) -> list[TranscriptSegment]:
        """All segments for a session, ascending by start time across speakers."""
        with _db_errors("list_segments", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(TranscriptSegmentModel)
                    .where(TranscriptSegmentModel.session_id == uuid.UUID(session_id))
                    .order_by(
                        TranscriptSegmentModel.start_time,
                        TranscriptSegmentModel.seq,
                    )
                )
                result = await session.execute(stmt)
                return [_model_to_segment(m) for m in result.scalars().all()]

    async def has_segments(self, session_id: str, speaker_id: str) -> bool:
        """Whether any segment exists for a (session, speaker) pair."""
        with _db_errors("has_segments", session_id=session_id, speaker_id=speaker_id):
            async for session in self._session_factory():
                stmt = (
                    select(TranscriptSegmentModel.seq)
                    .where(
                        TranscriptSegmentModel.session_id == uuid.UUID(session_id),
                        TranscriptSegmentModel.speaker_id == speaker_id,
                    )
                    .limit(1)
                )
                result = await session.execute(stmt)
                return result.first() is not None

    async def count_speakers(self, session_id: str) -> int:
        """Number of distinct speaker channels with stored segments."""
        with _db_errors("count_speakers", session_id=session_id):
            async for session in self._session_factory():
                stmt = select(
                    func.count(distinct(TranscriptSegmentModel.speaker_id))
                ).where(TranscriptSegmentModel.session_id == uuid.UUID(session_id))
                result = await session.execute(stmt)
                return int(result.scalar_one())

    # ── Channel Ingestion Status ─────────────────────────────────────────

    async def set_ingestion_status(
        self,
        session_id: str,
        speaker_id: str,
        status: IngestionStatus,
        segment_count: int = 0,
        error: str | None = None,
    ) -> ChannelIngestion:
        """Record the latest ingestion state of a (session, speaker) channel.

        One row per channel; a new attempt overwrites the previous one.
        """
        with _db_errors(
            "set_ingestion_status",
            session_id=session_id,
            speaker_id=speaker_id,
            status=status.value,
        ):
            async for session in self._session_factory():
                model = await session.get(
                    ChannelIngestionModel, (uuid.UUID(session_id), speaker_id)
                )
                if model is None:
                    model = ChannelIngestionModel(
                        session_id=uuid.UUID(session_id),
                        speaker_id=speaker_id,
                    )
                    session.add(model)
                model.status = status.value
                model.segment_count = segment_count
                model.error = error
                model.updated_at = datetime.now(timezone.utc)
                await session.commit()
                return _model_to_ingestion(model)

    async def list_ingestions(self, session_id: str) -> list[ChannelIngestion]:
        """Ingestion status of every channel seen for a session."""
        with _db_errors("list_ingestions", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(ChannelIngestionModel)
                    .where(ChannelIngestionModel.session_id == uuid.UUID(session_id))
                    .order_by(ChannelIngestionModel.speaker_id)
                )
                result = await session.execute(stmt)
                return [_model_to_ingestion(m) for m in result.scalars().all()]

    # ── Safety Flags ─────────────────────────────────────────────────────

    async def insert_flags(self, flags: list[SafetyFlag]) -> None:
        """Insert every flag of an analysis pass in one transaction."""
        if not flags:
            return
        with _db_errors("insert_flags", count=len(flags)):
            async for session in self._session_factory():
                session.add_all(
                    [
                        SafetyFlagModel(
                            id=f.id,
                            session_id=f.session_id,
                            session_kind=f.session_kind.value,
                            flag_type=f.flag_type.value,
                            severity=f.severity.value,
                            description=f.description,
                            excerpt=f.excerpt,
                            resolved=f.resolved,
                            created_at=f.created_at,
                        )
                        for f in flags
                    ]
                )
                await session.commit()

    async def list_flags(self, session_id: str) -> list[SafetyFlag]:
        """All flags for a session, oldest first."""
        with _db_errors("list_flags", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(SafetyFlagModel)
                    .where(SafetyFlagModel.session_id == uuid.UUID(session_id))
                    .order_by(SafetyFlagModel.created_at)
                )
                result = await session.execute(stmt)
                return [_model_to_flag(m) for m in result.scalars().all()]

    async def list_unresolved_flag_types(self, session_id: str) -> set[FlagType]:
        """Flag types with at least one unresolved flag on the session."""
        with _db_errors("list_unresolved_flag_types", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(SafetyFlagModel.flag_type)
                    .where(
                        SafetyFlagModel.session_id == uuid.UUID(session_id),
                        SafetyFlagModel.resolved.is_(False),
                    )
                    .distinct()
                )
                result = await session.execute(stmt)
                return {FlagType(row) for row in result.scalars().all()}

    # ── Notifications ────────────────────────────────────────────────────

    async def insert_notification(
        self, record: NotificationRecord
    ) -> NotificationRecord:
        """Insert a single notification row."""
        with _db_errors(
            "insert_notification",
            recipient_id=record.recipient_id,
            type=record.type.value,
        ):
            async for session in self._session_factory():
                model = NotificationModel(
                    id=record.id,
                    recipient_id=record.recipient_id,
                    session_id=record.session_id,
                    type=record.type.value,
                    title=record.title,
                    message=record.message,
                    metadata_data=record.metadata,
                    is_read=record.is_read,
                )
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return _model_to_notification(model)

    async def has_notification(
        self, notification_type: NotificationType, session_id: str
    ) -> bool:
        """Whether a notification of this type already references the session."""
        with _db_errors("has_notification", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(NotificationModel.id)
                    .where(
                        NotificationModel.type == notification_type.value,
                        NotificationModel.session_id == uuid.UUID(session_id),
                    )
                    .limit(1)
                )
                result = await session.execute(stmt)
                return result.first() is not None

    async def list_notifications(self, session_id: str) -> list[NotificationRecord]:
        """All notifications referencing a session."""
        with _db_errors("list_notifications", session_id=session_id):
            async for session in self._session_factory():
                stmt = (
                    select(NotificationModel)
                    .where(NotificationModel.session_id == uuid.UUID(session_id))
                    .order_by(NotificationModel.created_at)
                )
                result = await session.execute(stmt)
                return [_model_to_notification(m) for m in result.scalars().all()]

    # ── Operator Accounts ────────────────────────────────────────────────

    async def add_operator(self, account: OperatorAccount) -> OperatorAccount:
        """Register an operator account for escalations."""
        with _db_errors("add_operator", operator_id=account.id):
            async for session in self._session_factory():
                model = OperatorAccountModel(
                    id=account.id,
                    display_name=account.display_name,
                    active=account.active,
                )
                session.add(model)
                await session.commit()
                return OperatorAccount.model_validate(model)

    async def list_operator_ids(self) -> list[str]:
        """IDs of all active operator accounts."""
        with _db_errors("list_operator_ids"):
            async for session in self._session_factory():
                stmt = (
                    select(OperatorAccountModel.id)
                    .where(OperatorAccountModel.active.is_(True))
                    .order_by(OperatorAccountModel.id)
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
