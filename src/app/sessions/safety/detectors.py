"""Rule-based content-safety detectors for session transcripts.

Each detector is stateless and independent: ``detect(text, summary)`` returns
a DetectionResult when its rule matches, otherwise None. Matching is done on
lower-cased text; excerpts are cut from the original transcript.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.app.sessions.schemas import FlagType, Severity

EXCERPT_BEFORE = 50
EXCERPT_AFTER = 200
EXCERPT_FALLBACK = 200


@dataclass(frozen=True)
class DetectionResult:
    """One detector's finding, before it becomes a persisted SafetyFlag."""

    flag_type: FlagType
    severity: Severity
    description: str
    excerpt: str | None = None
    matched_terms: tuple[str, ...] = field(default_factory=tuple)


def extract_excerpt(transcript: str, terms: list[str] | tuple[str, ...]) -> str:
    """Cut context around the first term found, in ``terms`` order.

    When no term occurs in the transcript (or none are given), the first 200
    characters are returned, with ``...`` appended when truncated.
    """
    lowered = transcript.lower()
    for term in terms:
        index = lowered.find(term.lower())
        if index != -1:
            start = max(0, index - EXCERPT_BEFORE)
            end = min(len(transcript), index + EXCERPT_AFTER)
            return transcript[start:end]

    if len(transcript) > EXCERPT_FALLBACK:
        return f"{transcript[:EXCERPT_FALLBACK]}..."
    return transcript


class PaymentBypassDetector:
    """Off-platform payment talk in the transcript or the summary."""

    flag_type = FlagType.PAYMENT_BYPASS_ATTEMPT
    severity = Severity.CRITICAL

    KEYWORDS = (
        "pay outside",
        "pay directly",
        "bypass payment",
        "skip payment",
        "pay cash",
        "pay offline",
        "pay later",
        "no need to pay",
        "free session",
        "direct payment",
    )
    EXCERPT_HINTS = ("pay", "money", "cash", "direct", "outside", "bypass")

    def detect(self, text: str, summary: str | None = None) -> DetectionResult | None:
        lowered = text.lower()
        lowered_summary = (summary or "").lower()
        matched = tuple(
            k for k in self.KEYWORDS if k in lowered or k in lowered_summary
        )
        if not matched:
            return None
        return DetectionResult(
            flag_type=self.flag_type,
            severity=self.severity,
            description=(
                "Possible attempt to bypass payment system or discuss "
                "off-platform payments"
            ),
            excerpt=extract_excerpt(text, matched + self.EXCERPT_HINTS),
            matched_terms=matched,
        )


class InappropriateLanguageDetector:
    """Configured term list; matches nothing when the list is empty."""

    flag_type = FlagType.INAPPROPRIATE_LANGUAGE
    severity = Severity.HIGH

    def __init__(self, terms: list[str] | None = None) -> None:
        self._patterns = [
            (t, re.compile(rf"\b{re.escape(t.lower())}\b"))
            for t in (terms or [])
            if t.strip()
        ]

    def detect(self, text: str, summary: str | None = None) -> DetectionResult | None:
        if not self._patterns:
            return None
        lowered = text.lower()
        matched = tuple(term for term, pattern in self._patterns if pattern.search(lowered))
        if not matched:
            return None
        return DetectionResult(
            flag_type=self.flag_type,
            severity=self.severity,
            description="Inappropriate or unprofessional language detected",
            excerpt=extract_excerpt(text, matched),
            matched_terms=matched,
        )


class ContactSharingDetector:
    """Phone numbers, off-platform emails, or social-media handles."""

    flag_type = FlagType.CONTACT_INFORMATION_SHARED
    severity = Severity.MEDIUM

    PHONE_PATTERN = re.compile(r"\b\d{8,15}\b")
    EMAIL_PATTERN = re.compile(
        r"\b[A-Za-z0-9._%+-]+@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b", re.IGNORECASE
    )
    SOCIAL_KEYWORDS = ("whatsapp", "instagram", "facebook", "telegram", "snapchat")

    def __init__(self, platform_email_domain: str = "") -> None:
        self._platform_domain = platform_email_domain.strip().lower().lstrip("@")

    def detect(self, text: str, summary: str | None = None) -> DetectionResult | None:
        matched: list[str] = []

        phone = self.PHONE_PATTERN.search(text)
        if phone:
            matched.append(phone.group(0))

        for email in self.EMAIL_PATTERN.finditer(text):
            domain = email.group(1).lower()
            if not self._platform_domain or domain != self._platform_domain:
                matched.append(email.group(0))
                break

        lowered = text.lower()
        matched.extend(k for k in self.SOCIAL_KEYWORDS if k in lowered)

        if not matched:
            return None
        return DetectionResult(
            flag_type=self.flag_type,
            severity=self.severity,
            description="Phone numbers, email, or social media shared outside platform",
            excerpt=extract_excerpt(text, matched),
            matched_terms=tuple(matched),
        )


class EngagementQualityDetector:
    """Very short sessions or too few engagement indicators."""

    flag_type = FlagType.SESSION_QUALITY_ISSUE
    severity = Severity.LOW

    MIN_WORDS = 100
    MIN_ENGAGEMENT_KEYWORDS = 3
    ENGAGEMENT_KEYWORDS = ("question", "answer", "explain", "understand", "practice")

    def detect(self, text: str, summary: str | None = None) -> DetectionResult | None:
        word_count = len(text.split())
        if word_count < self.MIN_WORDS:
            reason = f"short session ({word_count} words)"
        else:
            lowered = text.lower()
            present = sum(1 for k in self.ENGAGEMENT_KEYWORDS if k in lowered)
            if present >= self.MIN_ENGAGEMENT_KEYWORDS:
                return None
            reason = f"few engagement indicators ({present} of {len(self.ENGAGEMENT_KEYWORDS)})"

        return DetectionResult(
            flag_type=self.flag_type,
            severity=self.severity,
            description=f"Session quality concerns detected: {reason}",
            excerpt=extract_excerpt(text, []),
        )


def default_detectors(
    inappropriate_terms: list[str] | None = None,
    platform_email_domain: str = "",
) -> list:
    """The standard detector set, in flag-table order."""
    return [
        PaymentBypassDetector(),
        InappropriateLanguageDetector(inappropriate_terms),
        ContactSharingDetector(platform_email_domain),
        EngagementQualityDetector(),
    ]
