"""TranscriptIngestor -- one speaker channel's audio to stored segments.

Flow per invocation:
1. Optional duplicate guard (``skip_existing``) via has_segments
2. Channel status set to processing
3. Transcription provider call under the shared RetryPolicy
4. Normalization into canonical segments
5. Batched inserts (one transaction per batch); a failed batch aborts the rest
6. Channel status set to completed, or failed with the partial count
7. Lifecycle notified so the expected-speaker barrier can be checked

Partial ingestion after a failed batch is possible. The failed channel status
records how many segments were stored; retrying is the caller's
responsibility.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

import structlog

from src.app.core.retry import RetryPolicy, SleepFn
from src.app.sessions.errors import SessionNotFoundError
from src.app.sessions.ingestion.normalizer import normalize_transcription
from src.app.sessions.lifecycle import SessionLifecycle
from src.app.sessions.schemas import IngestionStatus, TranscriptSegment

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 100


class TranscriptIngestor:
    """Transcribes and persists one speaker channel of a session.

    Args:
        repository: SessionPipelineRepository for segment persistence.
        transcription_client: Client exposing
            ``transcribe_url(audio_url, language=None) -> dict``.
        retry_policy: Policy applied to the provider call.
        lifecycle: Optional SessionLifecycle notified after success.
        batch_size: Segments per insert transaction.
        skip_existing: Skip (session, speaker) pairs that already have segments.
        sleep: Awaitable sleep used between retry attempts.
    """

    def __init__(
        self,
        repository: Any,
        transcription_client: Any,
        retry_policy: RetryPolicy | None = None,
        lifecycle: SessionLifecycle | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        skip_existing: bool = False,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._client = transcription_client
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0)
        self._lifecycle = lifecycle
        self._batch_size = batch_size
        self._skip_existing = skip_existing
        self._sleep = sleep

    async def ingest(
        self,
        session_id: str,
        speaker_id: str,
        audio_url: str,
        language: str | None = None,
    ) -> int:
        """Transcribe one speaker's recording and store its segments.

        Args:
            session_id: Session UUID string.
            speaker_id: Opaque media-channel id of the speaker.
            audio_url: Pointer to the speaker's recorded audio.
            language: Explicit language code, or None for auto-detection.

        Returns:
            Number of segments stored.

        Raises:
            SessionNotFoundError: If the session does not exist.
            RetryExhaustedError: If every provider attempt failed transiently.
            PersistenceError: If a batch insert failed.
        """
        log = logger.bind(session_id=session_id, speaker_id=speaker_id)

        session = await self._repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        if self._skip_existing and await self._repository.has_segments(
            session_id, speaker_id
        ):
            log.info("ingestion.skipped_existing")
            return 0

        log.info("ingestion.started", language=language or "auto")
        await self._repository.set_ingestion_status(
            session_id, speaker_id, IngestionStatus.PROCESSING
        )

        stored = 0
        try:
            response = await self._retry_policy.call(
                "transcription",
                self._client.transcribe_url,
                audio_url,
                language=language,
                sleep=self._sleep,
            )

            normalized = normalize_transcription(response)
            if not normalized:
                log.warning("ingestion.no_segments")

            segments = [
                TranscriptSegment(
                    session_id=uuid.UUID(session_id),
                    speaker_id=speaker_id,
                    start_time=s.start,
                    end_time=s.end,
                    text=s.text,
                    confidence=s.confidence,
                )
                for s in normalized
            ]

            for offset in range(0, len(segments), self._batch_size):
                batch = segments[offset : offset + self._batch_size]
                try:
                    stored += await self._repository.insert_segments(batch)
                except Exception:
                    log.error(
                        "ingestion.batch_failed",
                        batch_start=offset,
                        batch_end=offset + len(batch),
                        stored_before_failure=stored,
                    )
                    raise
        except Exception as exc:
            await self._record_failure(session_id, speaker_id, stored, exc)
            raise

        await self._repository.set_ingestion_status(
            session_id, speaker_id, IngestionStatus.COMPLETED, segment_count=stored
        )
        if not stored:
            return 0

        log.info("ingestion.completed", segments=stored)

        if self._lifecycle is not None:
            await self._lifecycle.record_ingestion(session_id)

        return stored

    async def _record_failure(
        self, session_id: str, speaker_id: str, stored: int, exc: Exception
    ) -> None:
        """Mark the channel failed without masking the original error."""
        try:
            await self._repository.set_ingestion_status(
                session_id,
                speaker_id,
                IngestionStatus.FAILED,
                segment_count=stored,
                error=f"{type(exc).__name__}: {exc}",
            )
        except Exception:
            logger.error(
                "ingestion.status_write_failed",
                session_id=session_id,
                speaker_id=speaker_id,
                exc_info=True,
            )
