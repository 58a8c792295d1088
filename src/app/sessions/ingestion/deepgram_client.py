"""Async HTTP client for the Deepgram pre-recorded transcription API.

Deepgram fetches the audio itself from the supplied URL, so no local
download is needed. The client performs exactly one request per call and
classifies failures for the shared RetryPolicy:

- timeouts, connection errors, 429 and 5xx -> TransientProviderError (retried)
- other 4xx -> ProviderRejectedError (not retried)
- missing API key -> ConfigurationError (raised at construction)

The raw JSON body is returned untouched; normalization into canonical
segments lives in ``normalizer.py``.
"""

from __future__ import annotations

import httpx
import structlog

from src.app.core.monitoring import pipeline_provider_calls_total
from src.app.sessions.errors import (
    ConfigurationError,
    ProviderRejectedError,
    TransientProviderError,
)

logger = structlog.get_logger(__name__)

PROVIDER = "deepgram"


class DeepgramClient:
    """Async client for Deepgram ``POST /listen`` with a remote audio URL.

    Args:
        api_key: Deepgram API key.
        base_url: API root (default: https://api.deepgram.com/v1).
        model: Deepgram model name.
        timeout: Request timeout in seconds; bounds a stuck provider call.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepgram.com/v1",
        model: str = "nova-2",
        timeout: float = 300.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("DEEPGRAM_API_KEY is not configured")
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the transcription timeout."""
        return httpx.AsyncClient(headers=self._headers, timeout=self._timeout)

    def _params(self, language: str | None) -> dict[str, str]:
        params = {
            "model": self._model,
            "punctuate": "true",
            "smart_format": "true",
            "utterances": "true",
        }
        if language:
            params["language"] = language
        else:
            params["detect_language"] = "true"
        return params

    async def transcribe_url(self, audio_url: str, language: str | None = None) -> dict:
        """Transcribe a remote audio file.

        Args:
            audio_url: Publicly fetchable URL of one speaker's recording.
            language: Explicit language code, or None for auto-detection.

        Returns:
            Raw Deepgram response JSON.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._base_url}/listen",
                    params=self._params(language),
                    json={"url": audio_url},
                )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="transient").inc()
            raise TransientProviderError(PROVIDER, f"{type(exc).__name__}: {exc}") from exc

        status_code = response.status_code
        if status_code == 429 or status_code >= 500:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="transient").inc()
            raise TransientProviderError(
                PROVIDER, f"HTTP {status_code}: {response.text[:200]}", status_code
            )
        if status_code >= 400:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="rejected").inc()
            raise ProviderRejectedError(PROVIDER, response.text[:200], status_code)

        pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="success").inc()
        data = response.json()
        logger.info(
            "deepgram.transcription_received",
            request_id=data.get("metadata", {}).get("request_id"),
            duration_s=data.get("metadata", {}).get("duration"),
        )
        return data
