"""Unit tests for content-safety detectors and the ContentSafetyAnalyzer.

Covers each detector rule, excerpt extraction, flag persistence, optional
re-run dedupe, critical-flag escalation to operators, and fail-open
behavior. Uses InMemoryPipelineRepository -- no database dependency.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from src.app.sessions.safety.analyzer import ContentSafetyAnalyzer, create_default_analyzer
from src.app.sessions.safety.detectors import (
    ContactSharingDetector,
    EngagementQualityDetector,
    InappropriateLanguageDetector,
    PaymentBypassDetector,
    default_detectors,
    extract_excerpt,
)
from src.app.sessions.schemas import (
    FlagType,
    NotificationType,
    OperatorAccount,
    SessionKind,
    Severity,
)

# 120 words with every engagement keyword: no quality flag on its own
ENGAGED = " ".join(
    ["Can you explain the question and answer so I understand before we practice?"] * 10
)


def _analyzer(repo, **kwargs) -> ContentSafetyAnalyzer:
    return ContentSafetyAnalyzer(repository=repo, detectors=default_detectors(), **kwargs)


async def _add_operators(repo, *ids: str) -> None:
    for operator_id in ids:
        await repo.add_operator(OperatorAccount(id=operator_id, display_name=operator_id))


# ── Detectors ────────────────────────────────────────────────────────────────


class TestPaymentBypassDetector:
    def test_keyword_in_transcript(self):
        result = PaymentBypassDetector().detect(f"{ENGAGED} We could bypass payment next time.")

        assert result is not None
        assert result.flag_type == FlagType.PAYMENT_BYPASS_ATTEMPT
        assert result.severity == Severity.CRITICAL
        assert "bypass payment" in result.excerpt

    def test_keyword_only_in_summary(self):
        result = PaymentBypassDetector().detect(ENGAGED, summary="Tutor offered to PAY CASH.")

        assert result is not None
        assert result.matched_terms == ("pay cash",)
        # no keyword or hint in the transcript: opening text is used instead
        assert result.excerpt == ENGAGED[:200] + "..."

    def test_case_insensitive(self):
        assert PaymentBypassDetector().detect("Let's Pay Outside the app") is not None

    def test_clean_transcript(self):
        assert PaymentBypassDetector().detect(ENGAGED, summary="Great session.") is None


class TestContactSharingDetector:
    def test_bare_nine_digit_number(self):
        result = ContactSharingDetector().detect("call me on 677123456 tonight")

        assert result is not None
        assert result.flag_type == FlagType.CONTACT_INFORMATION_SHARED
        assert result.severity == Severity.MEDIUM
        assert "677123456" in result.excerpt

    def test_short_numbers_are_ignored(self):
        assert ContactSharingDetector().detect("page 1234567 of the workbook") is None

    @pytest.mark.parametrize("keyword", ["WhatsApp", "instagram", "telegram"])
    def test_social_media_mentions(self, keyword):
        assert ContactSharingDetector().detect(f"find me on {keyword}") is not None

    def test_email_outside_platform_domain(self):
        detector = ContactSharingDetector(platform_email_domain="tutorhub.example")

        assert detector.detect("write to jane.doe@gmail.com") is not None

    def test_platform_email_is_allowed(self):
        detector = ContactSharingDetector(platform_email_domain="tutorhub.example")

        assert detector.detect("write to support@tutorhub.example") is None

    def test_any_email_flags_without_platform_domain(self):
        assert ContactSharingDetector().detect("write to support@tutorhub.example") is not None


class TestInappropriateLanguageDetector:
    def test_no_terms_is_noop(self):
        assert InappropriateLanguageDetector().detect("anything at all") is None

    def test_configured_term_matches_whole_word(self):
        detector = InappropriateLanguageDetector(["darn"])

        result = detector.detect("Oh DARN, I forgot.")

        assert result is not None
        assert result.severity == Severity.HIGH
        assert detector.detect("darned socks") is None


class TestEngagementQualityDetector:
    def test_eighty_words_is_quality_issue(self):
        text = " ".join(["question answer explain understand practice"] * 16)

        result = EngagementQualityDetector().detect(text)

        assert result is not None
        assert result.flag_type == FlagType.SESSION_QUALITY_ISSUE
        assert result.severity == Severity.LOW
        assert "80 words" in result.description

    def test_long_session_without_engagement(self):
        text = " ".join(["we talked about the weather today"] * 20)

        result = EngagementQualityDetector().detect(text)

        assert result is not None
        assert "engagement" in result.description

    def test_engaged_session_passes(self):
        assert EngagementQualityDetector().detect(ENGAGED) is None


class TestExtractExcerpt:
    def test_window_around_first_term(self):
        transcript = "x" * 100 + "pay outside" + "y" * 300

        excerpt = extract_excerpt(transcript, ["pay outside"])

        assert excerpt.startswith("x" * 50 + "pay outside")
        assert len(excerpt) == 250

    def test_fallback_truncates_with_ellipsis(self):
        transcript = "z" * 300

        assert extract_excerpt(transcript, []) == "z" * 200 + "..."

    def test_fallback_short_transcript_untouched(self):
        assert extract_excerpt("short", []) == "short"

    def test_no_term_found_uses_opening_text(self):
        assert extract_excerpt("hello", ["absent"]) == "hello"
        assert extract_excerpt("q" * 250, ["absent"]) == "q" * 200 + "..."


# ── Analyzer ─────────────────────────────────────────────────────────────────


class TestContentSafetyAnalyzer:
    @pytest.mark.asyncio
    async def test_bypass_payment_yields_single_critical_flag(self, repo):
        session = repo.add_session()
        transcript = f"{ENGAGED} Maybe we bypass payment and skip payment too."

        flags = await _analyzer(repo).analyze(str(session.id), SessionKind.RECURRING, transcript)

        bypass = [f for f in flags if f.flag_type == FlagType.PAYMENT_BYPASS_ATTEMPT]
        assert len(bypass) == 1
        assert bypass[0].severity == Severity.CRITICAL
        assert bypass[0].session_kind == SessionKind.RECURRING
        assert bypass[0].resolved is False
        assert repo.flags == flags

    @pytest.mark.asyncio
    async def test_each_matching_detector_yields_one_flag(self, repo):
        session = repo.add_session()
        transcript = "pay cash, my number is 677123456, add me on whatsapp"

        flags = await _analyzer(repo).analyze(str(session.id), SessionKind.TRIAL, transcript)

        assert sorted(f.flag_type.value for f in flags) == [
            "contact_information_shared",
            "payment_bypass_attempt",
            "session_quality_issue",
        ]

    @pytest.mark.asyncio
    async def test_critical_flag_notifies_every_operator(self, repo):
        session = repo.add_session()
        await _add_operators(repo, "op-1", "op-2", "op-3")

        await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, f"{ENGAGED} pay directly to me"
        )

        escalations = repo.notifications_of(NotificationType.CRITICAL_SESSION_FLAG)
        assert sorted(n.recipient_id for n in escalations) == ["op-1", "op-2", "op-3"]
        meta = escalations[0].metadata
        assert meta["session_id"] == str(session.id)
        assert meta["flag_count"] == 1
        assert meta["flags"][0]["flag_type"] == "payment_bypass_attempt"

    @pytest.mark.asyncio
    async def test_inactive_operators_are_not_notified(self, repo):
        session = repo.add_session()
        await repo.add_operator(OperatorAccount(id="op-active"))
        await repo.add_operator(OperatorAccount(id="op-retired", active=False))

        await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, f"{ENGAGED} pay offline"
        )

        escalations = repo.notifications_of(NotificationType.CRITICAL_SESSION_FLAG)
        assert [n.recipient_id for n in escalations] == ["op-active"]

    @pytest.mark.asyncio
    async def test_failed_operator_notification_does_not_stop_others(self, repo):
        session = repo.add_session()
        await _add_operators(repo, "op-1", "op-2")
        repo.fail_notification_recipients = {"op-1"}

        flags = await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, f"{ENGAGED} let's pay outside the app"
        )

        assert [f.flag_type for f in flags] == [FlagType.PAYMENT_BYPASS_ATTEMPT]
        assert repo.flags == flags
        escalations = repo.notifications_of(NotificationType.CRITICAL_SESSION_FLAG)
        assert [n.recipient_id for n in escalations] == ["op-2"]

    @pytest.mark.asyncio
    async def test_operator_lookup_failure_keeps_persisted_flags(self, repo):
        session = repo.add_session()

        async def broken_operator_ids():
            raise RuntimeError("operator table unavailable")

        repo.list_operator_ids = broken_operator_ids

        flags = await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, f"{ENGAGED} pay outside"
        )

        assert len(flags) == 1
        assert repo.flags == flags

    @pytest.mark.asyncio
    async def test_non_critical_flags_do_not_escalate(self, repo):
        session = repo.add_session()
        await _add_operators(repo, "op-1")

        flags = await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, f"{ENGAGED} text me at 677123456"
        )

        assert [f.flag_type for f in flags] == [FlagType.CONTACT_INFORMATION_SHARED]
        assert repo.notifications == []

    @pytest.mark.asyncio
    async def test_clean_transcript_creates_nothing(self, repo):
        session = repo.add_session()

        flags = await _analyzer(repo).analyze(str(session.id), SessionKind.RECURRING, ENGAGED)

        assert flags == []
        assert repo.flags == []

    @pytest.mark.asyncio
    async def test_rerun_duplicates_flags_by_default(self, repo):
        session = repo.add_session()
        analyzer = _analyzer(repo)
        transcript = f"{ENGAGED} pay later"

        await analyzer.analyze(str(session.id), SessionKind.RECURRING, transcript)
        await analyzer.analyze(str(session.id), SessionKind.RECURRING, transcript)

        assert len(repo.flags) == 2

    @pytest.mark.asyncio
    async def test_dedupe_skips_open_flag_types(self, repo):
        session = repo.add_session()
        await _add_operators(repo, "op-1")
        analyzer = _analyzer(repo, dedupe_unresolved=True)
        transcript = f"{ENGAGED} pay later"

        first = await analyzer.analyze(str(session.id), SessionKind.RECURRING, transcript)
        second = await analyzer.analyze(str(session.id), SessionKind.RECURRING, transcript)

        assert len(first) == 1
        assert second == []
        assert len(repo.flags) == 1
        assert len(repo.notifications_of(NotificationType.CRITICAL_SESSION_FLAG)) == 1

    @pytest.mark.asyncio
    async def test_fails_open_on_persistence_error(self, repo):
        session = repo.add_session()
        repo.fail_flag_inserts = True

        flags = await _analyzer(repo).analyze(
            str(session.id), SessionKind.RECURRING, "pay outside please"
        )

        assert flags == []

    @pytest.mark.asyncio
    async def test_fails_open_on_detector_error(self, repo):
        session = repo.add_session()

        class Broken:
            def detect(self, text, summary=None):
                raise RuntimeError("detector bug")

        analyzer = ContentSafetyAnalyzer(repository=repo, detectors=[Broken()])

        assert await analyzer.analyze(str(session.id), SessionKind.RECURRING, "x") == []

    def test_default_analyzer_reads_settings(self, repo):
        settings = SimpleNamespace(
            get_inappropriate_terms=lambda: ["darn"],
            PLATFORM_EMAIL_DOMAIN="tutorhub.example",
            SAFETY_DEDUPE_UNRESOLVED=True,
        )

        analyzer = create_default_analyzer(repo, settings)

        assert analyzer._dedupe_unresolved is True
        assert len(analyzer._detectors) == 4
