"""NotificationDispatcher -- "summary ready" fan-out to session participants.

Only sessions linked to a recurring engagement (recurring kind with a
recurring_engagement_id) are notified here; trial sessions go through a
separate feedback flow. An existing session_summary_ready notification for
the session makes the whole dispatch a no-op. Recipient inserts are
best-effort: a failure for one recipient is logged and the rest continue.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog

from src.app.core.monitoring import pipeline_notifications_total
from src.app.sessions.schemas import (
    NotificationRecord,
    NotificationType,
    PipelineSession,
)

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 100


def summary_preview(summary: str, length: int = PREVIEW_LENGTH) -> str:
    """First ``length`` characters, with ``...`` when truncated."""
    if len(summary) > length:
        return f"{summary[:length]}..."
    return summary


class NotificationDispatcher:
    """Inserts one summary-ready notification per participant, at most once.

    Args:
        repository: SessionPipelineRepository.
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    async def dispatch(self, session_id: str, summary: str) -> list[str]:
        """Notify the session's participants that a summary is ready.

        Returns:
            Recipient ids for which a notification row was inserted.
        """
        log = logger.bind(session_id=session_id)

        if await self._repository.has_notification(
            NotificationType.SESSION_SUMMARY_READY, session_id
        ):
            log.info("dispatch.already_sent")
            return []

        session = await self._repository.get_session(session_id)
        if session is None:
            log.warning("dispatch.session_not_found")
            return []

        if not session.is_linked_to_engagement:
            log.info(
                "dispatch.skipped_unlinked",
                session_kind=session.session_kind.value,
                recurring_engagement_id=session.recurring_engagement_id,
            )
            return []

        notified: list[str] = []
        for recipient_id in session.participant_ids:
            try:
                await self._repository.insert_notification(
                    self._build_record(session, recipient_id, summary)
                )
            except Exception:
                log.warning(
                    "dispatch.recipient_failed",
                    recipient_id=recipient_id,
                    exc_info=True,
                )
                continue
            pipeline_notifications_total.labels(
                type=NotificationType.SESSION_SUMMARY_READY.value
            ).inc()
            notified.append(recipient_id)

        log.info(
            "dispatch.completed",
            recipients=len(notified),
            participants=len(session.participant_ids),
        )
        return notified

    def _build_record(
        self, session: PipelineSession, recipient_id: str, summary: str
    ) -> NotificationRecord:
        if recipient_id == session.guardian_id and recipient_id not in (
            session.tutor_id,
            session.learner_id,
        ):
            message = "A summary of your child's tutoring session is now available."
        else:
            message = "A summary of your tutoring session is now available."
        return NotificationRecord(
            recipient_id=recipient_id,
            session_id=uuid.UUID(str(session.id)),
            type=NotificationType.SESSION_SUMMARY_READY,
            title="Session Summary Available",
            message=message,
            metadata={
                "session_id": str(session.id),
                "session_kind": session.session_kind.value,
                "summary_preview": summary_preview(summary),
            },
        )
