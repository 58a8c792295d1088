"""Session finalization lifecycle.

States move strictly forward:

    collecting -> ready_to_aggregate -> aggregated -> analyzed -> summarized -> notified

A session leaves ``collecting`` only when every expected speaker channel has
ingested segments, or when an explicit external finalize signal arrives.
Downstream stages refuse to run before ``ready_to_aggregate``.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.app.sessions.errors import InvalidTransitionError, SessionNotFoundError
from src.app.sessions.schemas import PipelineSession, SessionStage

logger = structlog.get_logger(__name__)


class SessionLifecycle:
    """Persists lifecycle transitions through the pipeline repository.

    Args:
        repository: SessionPipelineRepository (or compatible double).
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    async def _load(self, session_id: str) -> PipelineSession:
        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def advance(self, session_id: str, target: SessionStage) -> PipelineSession:
        """Move the session forward to ``target``.

        No-op when the session is already at or past ``target``, so stages
        can be re-run safely.

        Raises:
            InvalidTransitionError: If ``target`` is more than one step ahead.
            SessionNotFoundError: If the session does not exist.
        """
        session = await self._load(session_id)
        current = session.stage
        if current.rank >= target.rank:
            return session
        if target.rank != current.rank + 1:
            raise InvalidTransitionError(session_id, current.value, target.value)

        updated = await self._repository.update_stage(session_id, target)
        logger.info(
            "lifecycle.advanced",
            session_id=session_id,
            from_stage=current.value,
            to_stage=target.value,
        )
        return updated

    async def finalize(self, session_id: str) -> PipelineSession:
        """Explicit external signal that all speaker channels are in."""
        return await self.advance(session_id, SessionStage.READY_TO_AGGREGATE)

    async def record_ingestion(self, session_id: str) -> PipelineSession:
        """Check the expected-speaker barrier after a channel finished ingesting."""
        session = await self._load(session_id)
        if session.stage != SessionStage.COLLECTING:
            return session
        if not session.expected_speaker_count:
            return session

        ingested = await self._repository.count_speakers(session_id)
        if ingested < session.expected_speaker_count:
            logger.info(
                "lifecycle.awaiting_speakers",
                session_id=session_id,
                ingested=ingested,
                expected=session.expected_speaker_count,
            )
            return session

        return await self.advance(session_id, SessionStage.READY_TO_AGGREGATE)
