"""SummarizationEngine -- idempotent LLM summary for one session.

The stored summary is the idempotency marker: once non-empty, every later
call returns it without touching the language model. The write itself is a
conditional update, so a concurrent run that lost the race returns the
winner's summary instead of overwriting it.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from src.app.core.retry import RetryPolicy, SleepFn
from src.app.sessions.errors import PermanentInputError, SessionNotFoundError

logger = structlog.get_logger(__name__)

MIN_TRANSCRIPT_CHARS = 10
SUMMARY_MAX_TOKENS = 600
SUMMARY_TEMPERATURE = 0.5

SYSTEM_PROMPT = (
    "You are a session analysis assistant for a tutoring platform. Summarize "
    "this tutoring session transcript in 2-4 concise paragraphs. Focus on: "
    "topics covered, student progress, key takeaways, and any suggested next "
    "steps. Write in a clear, encouraging tone and only state what the "
    "transcript supports."
)


def check_transcript(transcript: str | None) -> str:
    """Return the stripped transcript or raise PermanentInputError."""
    text = (transcript or "").strip()
    if len(text) < MIN_TRANSCRIPT_CHARS:
        raise PermanentInputError(
            f"transcript too short to summarize ({len(text)} chars)"
        )
    return text


class SummarizationEngine:
    """Ensures a natural-language summary exists for a session exactly once.

    Args:
        repository: SessionPipelineRepository.
        aggregator: TranscriptAggregator used when no transcript is passed in.
        llm_service: Object exposing async ``completion(messages, ...)``.
        retry_policy: Policy for the model call (2 attempts by default).
        enabled: Feature switch; when False summarize() returns "".
        sleep: Awaitable sleep used between retry attempts.
    """

    def __init__(
        self,
        repository: Any,
        aggregator: Any,
        llm_service: Any,
        retry_policy: RetryPolicy | None = None,
        enabled: bool = True,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._aggregator = aggregator
        self._llm = llm_service
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=2, base_delay=1.0)
        self._enabled = enabled
        self._sleep = sleep

    async def summarize(self, session_id: str, transcript: str | None = None) -> str:
        """Return the session summary, generating it on first call.

        Args:
            session_id: Session UUID string.
            transcript: Already aggregated transcript, if the caller has it.

        Returns:
            The summary, or "" when there is nothing to summarize or the
            feature is disabled.

        Raises:
            SessionNotFoundError: If the session does not exist.
            RetryExhaustedError: If every model attempt failed transiently.
            ConfigurationError: If the model provider is not configured.
        """
        log = logger.bind(session_id=session_id)

        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.has_summary:
            log.info("summary.already_exists")
            return session.summary

        if not self._enabled:
            log.info("summary.disabled")
            return ""

        if transcript is None:
            transcript = await self._aggregator.aggregate(session_id)
        try:
            text = check_transcript(transcript)
        except PermanentInputError as exc:
            log.warning("summary.skipped", reason=str(exc))
            return ""

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": text},
        ]
        result = await self._retry_policy.call(
            "summarization",
            self._llm.completion,
            messages,
            max_tokens=SUMMARY_MAX_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
            metadata={"session_id": session_id},
            sleep=self._sleep,
        )
        summary = result["content"].strip()

        written = await self._repository.set_summary(session_id, summary)
        if not written:
            stored = await self._repository.get_session(session_id)
            log.warning("summary.concurrent_write_lost")
            if stored is not None and stored.has_summary:
                return stored.summary

        log.info(
            "summary.generated",
            model=result.get("model"),
            chars=len(summary),
            usage=result.get("usage"),
        )
        return summary
