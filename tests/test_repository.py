"""Integration tests for SessionPipelineRepository against SQLite.

Runs the real SQLAlchemy models through aiosqlite with a shared in-memory
connection, so query semantics (ordering, conditional summary update,
distinct speaker counting) are exercised without PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.app.core.database import Base
from src.app.sessions import models  # noqa: F401
from src.app.sessions.errors import SessionNotFoundError
from src.app.sessions.repository import SessionPipelineRepository
from src.app.sessions.schemas import (
    FlagType,
    IngestionStatus,
    NotificationRecord,
    NotificationType,
    OperatorAccount,
    SafetyFlag,
    SessionCreate,
    SessionKind,
    SessionStage,
    Severity,
    TranscriptSegment,
)


@pytest_asyncio.fixture
async def sql_repo():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def session_factory():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield SessionPipelineRepository(session_factory=session_factory)
    await engine.dispose()


async def _new_session(repo: SessionPipelineRepository, **overrides):
    fields = {
        "session_kind": SessionKind.RECURRING,
        "tutor_id": "T1",
        "learner_id": "L1",
        "recurring_engagement_id": "engagement-1",
    }
    fields.update(overrides)
    return await repo.create_session(SessionCreate(**fields))


def _segment(session_id, speaker_id, start, text) -> TranscriptSegment:
    return TranscriptSegment(
        session_id=session_id,
        speaker_id=speaker_id,
        start_time=start,
        end_time=start + 1.0,
        text=text,
    )


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_repo):
        created = await _new_session(sql_repo, expected_speaker_count=2)

        fetched = await sql_repo.get_session(str(created.id))

        assert fetched is not None
        assert fetched.stage == SessionStage.COLLECTING
        assert fetched.summary == ""
        assert fetched.expected_speaker_count == 2
        assert fetched.participant_ids == ["T1", "L1"]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, sql_repo):
        assert await sql_repo.get_session(str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_set_summary_writes_only_once(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = str(created.id)

        assert await sql_repo.set_summary(sid, "First.") is True
        assert await sql_repo.set_summary(sid, "Second.") is False

        assert (await sql_repo.get_session(sid)).summary == "First."

    @pytest.mark.asyncio
    async def test_update_stage(self, sql_repo):
        created = await _new_session(sql_repo)

        updated = await sql_repo.update_stage(str(created.id), SessionStage.READY_TO_AGGREGATE)

        assert updated.stage == SessionStage.READY_TO_AGGREGATE

    @pytest.mark.asyncio
    async def test_update_stage_unknown_session(self, sql_repo):
        with pytest.raises(SessionNotFoundError):
            await sql_repo.update_stage(str(uuid.uuid4()), SessionStage.AGGREGATED)


class TestSegments:
    @pytest.mark.asyncio
    async def test_ordered_by_start_with_insertion_tiebreak(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = created.id

        await sql_repo.insert_segments([_segment(sid, "B", 5.0, "later"), _segment(sid, "B", 2.0, "tie one")])
        await sql_repo.insert_segments([_segment(sid, "A", 2.0, "tie two"), _segment(sid, "A", 0.0, "first")])

        segments = await sql_repo.list_segments(str(sid))

        assert [s.text for s in segments] == ["first", "tie one", "tie two", "later"]

    @pytest.mark.asyncio
    async def test_speaker_presence_and_count(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = created.id
        other = await _new_session(sql_repo)

        await sql_repo.insert_segments(
            [
                _segment(sid, "A", 0.0, "one"),
                _segment(sid, "A", 1.0, "two"),
                _segment(sid, "B", 2.0, "three"),
                _segment(other.id, "C", 0.0, "elsewhere"),
            ]
        )

        assert await sql_repo.has_segments(str(sid), "A") is True
        assert await sql_repo.has_segments(str(sid), "C") is False
        assert await sql_repo.count_speakers(str(sid)) == 2

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, sql_repo):
        assert await sql_repo.insert_segments([]) == 0


class TestChannelIngestions:
    @pytest.mark.asyncio
    async def test_new_attempt_overwrites_channel_status(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = str(created.id)

        await sql_repo.set_ingestion_status(sid, "B", IngestionStatus.PROCESSING)
        await sql_repo.set_ingestion_status(
            sid, "B", IngestionStatus.FAILED, segment_count=100, error="PersistenceError: x"
        )
        await sql_repo.set_ingestion_status(
            sid, "A", IngestionStatus.COMPLETED, segment_count=3
        )

        records = await sql_repo.list_ingestions(sid)

        assert [(r.speaker_id, r.status, r.segment_count) for r in records] == [
            ("A", IngestionStatus.COMPLETED, 3),
            ("B", IngestionStatus.FAILED, 100),
        ]
        assert records[0].error is None
        assert records[1].error == "PersistenceError: x"

    @pytest.mark.asyncio
    async def test_retry_after_failure_clears_error(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = str(created.id)

        await sql_repo.set_ingestion_status(sid, "A", IngestionStatus.FAILED, error="boom")
        stored = await sql_repo.set_ingestion_status(
            sid, "A", IngestionStatus.COMPLETED, segment_count=2
        )

        assert stored.status == IngestionStatus.COMPLETED
        assert stored.error is None
        assert len(await sql_repo.list_ingestions(sid)) == 1

    @pytest.mark.asyncio
    async def test_no_attempts_lists_nothing(self, sql_repo):
        created = await _new_session(sql_repo)

        assert await sql_repo.list_ingestions(str(created.id)) == []


class TestFlags:
    @pytest.mark.asyncio
    async def test_insert_and_unresolved_types(self, sql_repo):
        created = await _new_session(sql_repo)
        now = datetime.now(timezone.utc)
        flags = [
            SafetyFlag(
                session_id=created.id,
                session_kind=SessionKind.RECURRING,
                flag_type=FlagType.PAYMENT_BYPASS_ATTEMPT,
                severity=Severity.CRITICAL,
                description="payment",
                excerpt="pay outside",
                created_at=now,
            ),
            SafetyFlag(
                session_id=created.id,
                session_kind=SessionKind.RECURRING,
                flag_type=FlagType.SESSION_QUALITY_ISSUE,
                severity=Severity.LOW,
                description="quality",
                resolved=True,
                created_at=now,
            ),
        ]

        await sql_repo.insert_flags(flags)

        stored = await sql_repo.list_flags(str(created.id))
        assert {f.flag_type for f in stored} == {
            FlagType.PAYMENT_BYPASS_ATTEMPT,
            FlagType.SESSION_QUALITY_ISSUE,
        }
        assert await sql_repo.list_unresolved_flag_types(str(created.id)) == {
            FlagType.PAYMENT_BYPASS_ATTEMPT
        }


class TestNotifications:
    @pytest.mark.asyncio
    async def test_insert_and_dedupe_lookup(self, sql_repo):
        created = await _new_session(sql_repo)
        sid = str(created.id)

        assert await sql_repo.has_notification(NotificationType.SESSION_SUMMARY_READY, sid) is False

        stored = await sql_repo.insert_notification(
            NotificationRecord(
                recipient_id="T1",
                session_id=created.id,
                type=NotificationType.SESSION_SUMMARY_READY,
                title="Session Summary Available",
                message="Summary ready.",
                metadata={"session_id": sid, "summary_preview": "Summary"},
            )
        )

        assert stored.created_at is not None
        assert stored.metadata["summary_preview"] == "Summary"
        assert await sql_repo.has_notification(NotificationType.SESSION_SUMMARY_READY, sid) is True
        assert await sql_repo.has_notification(NotificationType.CRITICAL_SESSION_FLAG, sid) is False
        assert [n.recipient_id for n in await sql_repo.list_notifications(sid)] == ["T1"]


class TestOperators:
    @pytest.mark.asyncio
    async def test_only_active_operators_listed(self, sql_repo):
        await sql_repo.add_operator(OperatorAccount(id="op-b", display_name="B"))
        await sql_repo.add_operator(OperatorAccount(id="op-a", display_name="A"))
        await sql_repo.add_operator(OperatorAccount(id="op-x", active=False))

        assert await sql_repo.list_operator_ids() == ["op-a", "op-b"]
