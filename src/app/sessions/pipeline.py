"""SessionPipeline -- runs the post-session stages for one finalized session.

Order: aggregate -> analyze -> summarize -> notify, advancing the lifecycle
after each stage. Re-invocation is safe: the analyzer is skipped once the
session is past ``analyzed``, and summarization and dispatch rely on their
own idempotency guards.
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.app.core.monitoring import track_stage
from src.app.sessions.errors import SessionNotFoundError, SessionNotReadyError
from src.app.sessions.lifecycle import SessionLifecycle
from src.app.sessions.schemas import SafetyFlag, SessionStage

logger = structlog.get_logger(__name__)


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    session_id: str
    stage: SessionStage
    summary: str = ""
    flags: list[SafetyFlag] = Field(default_factory=list)
    notified: list[str] = Field(default_factory=list)


class SessionPipeline:
    """Wires the stage objects together behind the session lifecycle.

    Args:
        repository: SessionPipelineRepository.
        lifecycle: SessionLifecycle for stage transitions.
        aggregator: TranscriptAggregator.
        analyzer: ContentSafetyAnalyzer.
        summarizer: SummarizationEngine.
        dispatcher: NotificationDispatcher.
    """

    def __init__(
        self,
        repository: Any,
        lifecycle: SessionLifecycle,
        aggregator: Any,
        analyzer: Any,
        summarizer: Any,
        dispatcher: Any,
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._aggregator = aggregator
        self._analyzer = analyzer
        self._summarizer = summarizer
        self._dispatcher = dispatcher

    async def process(self, session_id: str) -> PipelineResult:
        """Run every remaining stage for a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionNotReadyError: If the session is still collecting.
            RetryExhaustedError: If summarization exhausted its retries.
        """
        log = logger.bind(session_id=session_id)

        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.stage.rank < SessionStage.READY_TO_AGGREGATE.rank:
            raise SessionNotReadyError(session_id, session.stage.value)

        log.info("pipeline.started", stage=session.stage.value)

        async with track_stage("aggregate"):
            transcript = await self._aggregator.aggregate(session_id)
        session = await self._lifecycle.advance(session_id, SessionStage.AGGREGATED)

        flags: list[SafetyFlag] = []
        if session.stage.rank < SessionStage.ANALYZED.rank:
            async with track_stage("analyze"):
                flags = await self._analyzer.analyze(
                    session_id,
                    session.session_kind,
                    transcript,
                    session.summary or None,
                )
            session = await self._lifecycle.advance(session_id, SessionStage.ANALYZED)

        async with track_stage("summarize"):
            summary = await self._summarizer.summarize(session_id, transcript)
        if not summary:
            log.info("pipeline.stopped_without_summary", stage=session.stage.value)
            return PipelineResult(
                session_id=session_id, stage=session.stage, flags=flags
            )
        session = await self._lifecycle.advance(session_id, SessionStage.SUMMARIZED)

        async with track_stage("notify"):
            notified = await self._dispatcher.dispatch(session_id, summary)
        session = await self._lifecycle.advance(session_id, SessionStage.NOTIFIED)

        log.info(
            "pipeline.completed",
            stage=session.stage.value,
            flags=len(flags),
            notified=len(notified),
        )
        return PipelineResult(
            session_id=session_id,
            stage=session.stage,
            summary=summary,
            flags=flags,
            notified=notified,
        )
