"""Normalize transcription provider output into canonical segments.

This is the only place that knows the provider's response shape. Utterance
level output maps one-to-one onto segments; when only word timestamps are
available, words are grouped greedily into windows of WORD_WINDOW_SECONDS,
starting a new segment once a word would end at or beyond the window. A
response carrying neither becomes a single segment spanning the whole
channel transcript.
"""

from __future__ import annotations

from typing import Any

from src.app.sessions.schemas import NormalizedSegment

WORD_WINDOW_SECONDS = 3.0


def normalize_transcription(response: dict[str, Any]) -> list[NormalizedSegment]:
    """Produce the canonical segment sequence for one speaker channel.

    Args:
        response: Raw provider JSON (Deepgram ``results`` layout).

    Returns:
        Segments in provider order; empty-text segments are dropped.
    """
    results = response.get("results") or {}
    alternative = _first_alternative(results)

    utterances = results.get("utterances") or []
    if utterances:
        segments = [_from_utterance(u) for u in utterances]
    elif alternative.get("words"):
        segments = group_words(alternative["words"])
    else:
        segments = [_whole_transcript(alternative, response.get("metadata") or {})]

    return [s for s in segments if s.text]


def _from_utterance(utterance: dict[str, Any]) -> NormalizedSegment:
    return NormalizedSegment(
        start=float(utterance["start"]),
        end=float(utterance["end"]),
        text=(utterance.get("transcript") or "").strip(),
        confidence=utterance.get("confidence"),
    )


def _first_alternative(results: dict[str, Any]) -> dict[str, Any]:
    channels = results.get("channels") or []
    if not channels:
        return {}
    alternatives = channels[0].get("alternatives") or []
    if not alternatives:
        return {}
    return alternatives[0]


def _whole_transcript(
    alternative: dict[str, Any], metadata: dict[str, Any]
) -> NormalizedSegment:
    """One segment from 0 to the audio duration holding the full transcript."""
    return NormalizedSegment(
        start=0.0,
        end=float(metadata.get("duration") or 0.0),
        text=(alternative.get("transcript") or "").strip(),
        confidence=alternative.get("confidence"),
    )


def group_words(
    words: list[dict[str, Any]],
    window_seconds: float = WORD_WINDOW_SECONDS,
) -> list[NormalizedSegment]:
    """Group word timestamps into segments of roughly ``window_seconds``.

    Grouped segments carry no confidence.
    """
    segments: list[NormalizedSegment] = []
    window_start: float | None = None
    window_end = 0.0
    tokens: list[str] = []

    for word in words:
        start = float(word["start"])
        end = float(word["end"])
        # Deepgram sets punctuated_word when punctuate/smart_format is on
        token = word.get("punctuated_word") or word.get("word") or ""

        if window_start is None or end - window_start >= window_seconds:
            if window_start is not None:
                segments.append(
                    NormalizedSegment(
                        start=window_start,
                        end=window_end,
                        text=" ".join(tokens).strip(),
                    )
                )
            window_start = start
            window_end = end
            tokens = [token]
        else:
            tokens.append(token)
            window_end = end

    if window_start is not None:
        segments.append(
            NormalizedSegment(
                start=window_start,
                end=window_end,
                text=" ".join(tokens).strip(),
            )
        )

    return segments
