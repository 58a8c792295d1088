"""Merge a session's per-speaker segments into one chronological transcript."""

from __future__ import annotations

from typing import Any

import structlog

from src.app.sessions.schemas import TranscriptSegment

logger = structlog.get_logger(__name__)


def format_timestamp(seconds: float) -> str:
    """Render a session offset as ``m:ss`` (minutes unpadded)."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def format_line(segment: TranscriptSegment) -> str:
    return (
        f"[{format_timestamp(segment.start_time)}] "
        f"(speaker {segment.speaker_id}): {segment.text.strip()}"
    )


class TranscriptAggregator:
    """Reads stored segments and renders the session transcript artifact.

    Ordering comes from the repository: ``start_time`` ascending with
    insertion order as the tiebreak, regardless of speaker.
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    async def aggregate(self, session_id: str) -> str:
        """Return the transcript text, or ``""`` when no segments exist."""
        segments = await self._repository.list_segments(session_id)
        if not segments:
            logger.info("aggregation.empty", session_id=session_id)
            return ""

        text = "\n".join(format_line(s) for s in segments)
        logger.info(
            "aggregation.completed",
            session_id=session_id,
            segments=len(segments),
            speakers=len({s.speaker_id for s in segments}),
        )
        return text
