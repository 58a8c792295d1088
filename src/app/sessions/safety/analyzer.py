"""Content-safety analyzer -- runs detectors, persists flags, escalates.

The analyzer is fail-open: an error during detection or flag persistence is
logged and the pass returns an empty list. Escalation runs after the flags
are stored and isolates each operator, so a failed notification never hides
flags that were persisted. It never blocks the rest of the pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from src.app.core.monitoring import (
    pipeline_notifications_total,
    pipeline_safety_flags_total,
)
from src.app.sessions.safety.detectors import default_detectors
from src.app.sessions.schemas import (
    NotificationRecord,
    NotificationType,
    SafetyFlag,
    SessionKind,
    Severity,
)

logger = structlog.get_logger(__name__)


class ContentSafetyAnalyzer:
    """Scans aggregated transcripts and records severity-tagged flags.

    Args:
        repository: SessionPipelineRepository (flags, operators, notifications).
        detectors: Objects exposing ``detect(text, summary)``.
        dedupe_unresolved: Skip flag types that already have an unresolved
            flag on the session (re-run protection).
    """

    def __init__(
        self,
        repository: Any,
        detectors: list[Any],
        dedupe_unresolved: bool = False,
    ) -> None:
        self._repository = repository
        self._detectors = detectors
        self._dedupe_unresolved = dedupe_unresolved

    async def analyze(
        self,
        session_id: str,
        session_kind: SessionKind,
        transcript: str,
        summary: str | None = None,
    ) -> list[SafetyFlag]:
        """Run one analysis pass.

        Returns:
            Flags persisted by this pass; empty on no findings or any failure.
        """
        try:
            return await self._analyze(session_id, session_kind, transcript, summary)
        except Exception:
            logger.warning(
                "safety.analysis_failed",
                session_id=session_id,
                exc_info=True,
            )
            return []

    async def _analyze(
        self,
        session_id: str,
        session_kind: SessionKind,
        transcript: str,
        summary: str | None,
    ) -> list[SafetyFlag]:
        now = datetime.now(timezone.utc)
        flags: list[SafetyFlag] = []
        for detector in self._detectors:
            result = detector.detect(transcript, summary)
            if result is None:
                continue
            flags.append(
                SafetyFlag(
                    session_id=uuid.UUID(session_id),
                    session_kind=session_kind,
                    flag_type=result.flag_type,
                    severity=result.severity,
                    description=result.description,
                    excerpt=result.excerpt,
                    created_at=now,
                )
            )

        if flags and self._dedupe_unresolved:
            existing = await self._repository.list_unresolved_flag_types(session_id)
            skipped = [f.flag_type.value for f in flags if f.flag_type in existing]
            if skipped:
                logger.info(
                    "safety.flags_deduplicated",
                    session_id=session_id,
                    flag_types=skipped,
                )
            flags = [f for f in flags if f.flag_type not in existing]

        if not flags:
            logger.info("safety.no_flags", session_id=session_id)
            return []

        await self._repository.insert_flags(flags)
        for flag in flags:
            pipeline_safety_flags_total.labels(
                flag_type=flag.flag_type.value, severity=flag.severity.value
            ).inc()
        logger.info(
            "safety.flags_created",
            session_id=session_id,
            count=len(flags),
            flag_types=[f.flag_type.value for f in flags],
        )

        critical = [f for f in flags if f.severity == Severity.CRITICAL]
        if critical:
            try:
                await self._escalate(session_id, critical)
            except Exception:
                # Flags are already stored; report them regardless
                logger.warning(
                    "safety.escalation_failed",
                    session_id=session_id,
                    exc_info=True,
                )

        return flags

    async def _escalate(self, session_id: str, critical: list[SafetyFlag]) -> list[str]:
        """One critical_session_flag notification per active operator.

        A failed insert for one operator is logged and does not stop the
        remaining operators from being notified.

        Returns:
            IDs of operators whose notification was written.
        """
        operator_ids = await self._repository.list_operator_ids()
        if not operator_ids:
            logger.warning("safety.no_operators", session_id=session_id)
            return []

        metadata = {
            "session_id": session_id,
            "flag_count": len(critical),
            "flags": [f.model_dump(mode="json") for f in critical],
        }
        notified: list[str] = []
        for operator_id in operator_ids:
            try:
                await self._repository.insert_notification(
                    NotificationRecord(
                        recipient_id=operator_id,
                        session_id=uuid.UUID(session_id),
                        type=NotificationType.CRITICAL_SESSION_FLAG,
                        title="Critical Flag Detected",
                        message=(
                            f"{len(critical)} critical flag(s) detected in session "
                            f"{session_id}"
                        ),
                        metadata=metadata,
                    )
                )
            except Exception:
                logger.warning(
                    "safety.operator_notification_failed",
                    session_id=session_id,
                    operator_id=operator_id,
                    exc_info=True,
                )
                continue
            pipeline_notifications_total.labels(
                type=NotificationType.CRITICAL_SESSION_FLAG.value
            ).inc()
            notified.append(operator_id)

        logger.info(
            "safety.operators_notified",
            session_id=session_id,
            operators=len(notified),
            failed=len(operator_ids) - len(notified),
            critical_flags=len(critical),
        )
        return notified


def create_default_analyzer(repository: Any, settings: Any) -> ContentSafetyAnalyzer:
    """Build the analyzer with the standard detectors from settings."""
    return ContentSafetyAnalyzer(
        repository=repository,
        detectors=default_detectors(
            inappropriate_terms=settings.get_inappropriate_terms(),
            platform_email_domain=settings.PLATFORM_EMAIL_DOMAIN,
        ),
        dedupe_unresolved=settings.SAFETY_DEDUPE_UNRESOLVED,
    )
