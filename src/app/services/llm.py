"""LLM provider abstraction via LiteLLM Router.

Provides the summary-generation LLM service with:
- SUMMARY_MODEL (OpenAI by default) as the primary ``summary`` model group
- SUMMARY_FALLBACK_MODEL (Anthropic) when its key is configured
- Router-level retries disabled; the shared RetryPolicy owns retries
- Provider failures classified as transient, rejected, or configuration errors
"""

from __future__ import annotations

from typing import Any

import litellm
import structlog
from litellm import Router

from src.app.core.monitoring import pipeline_provider_calls_total
from src.app.sessions.errors import (
    ConfigurationError,
    ProviderRejectedError,
    TransientProviderError,
)

logger = structlog.get_logger(__name__)

PROVIDER = "llm"

SUMMARY_GROUP = "summary"
SUMMARY_FALLBACK_GROUP = "summary-fallback"

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

_CONFIGURATION_ERRORS: tuple[type[Exception], ...] = (
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
)


def _provider_key(model: str, settings: Any) -> str:
    if model.startswith("anthropic/"):
        return settings.ANTHROPIC_API_KEY
    return settings.OPENAI_API_KEY


# ── LLM Service ──────────────────────────────────────────────────────────────


class LLMService:
    """LLM provider abstraction with LiteLLM Router.

    One attempt per ``completion`` call. Rate limits, timeouts, connection
    failures, 5xx, and empty completions raise TransientProviderError so the
    caller's RetryPolicy can retry them.

    Args:
        settings: Application Settings.

    Raises:
        ConfigurationError: If no key is configured for any summary model.
    """

    def __init__(self, settings: Any) -> None:
        model_list = []
        fallbacks = []

        primary_key = _provider_key(settings.SUMMARY_MODEL, settings)
        if primary_key:
            model_list.append({
                "model_name": SUMMARY_GROUP,
                "litellm_params": {
                    "model": settings.SUMMARY_MODEL,
                    "api_key": primary_key,
                },
            })

        fallback_key = (
            _provider_key(settings.SUMMARY_FALLBACK_MODEL, settings)
            if settings.SUMMARY_FALLBACK_MODEL
            else ""
        )
        if fallback_key:
            # Without a primary, the fallback model serves the summary group
            model_list.append({
                "model_name": SUMMARY_FALLBACK_GROUP if primary_key else SUMMARY_GROUP,
                "litellm_params": {
                    "model": settings.SUMMARY_FALLBACK_MODEL,
                    "api_key": fallback_key,
                },
            })
            if primary_key:
                fallbacks.append({SUMMARY_GROUP: [SUMMARY_FALLBACK_GROUP]})

        if not model_list:
            raise ConfigurationError(
                "No LLM API key configured for SUMMARY_MODEL or SUMMARY_FALLBACK_MODEL"
            )

        self.router = Router(
            model_list=model_list,
            fallbacks=fallbacks,
            num_retries=0,
            timeout=settings.LLM_TIMEOUT,
        )
        logger.info(
            "llm.router_configured",
            groups=sorted({m["model_name"] for m in model_list}),
            fallback=bool(fallbacks),
        )

    async def completion(
        self,
        messages: list[dict],
        max_tokens: int = 600,
        temperature: float = 0.5,
        metadata: dict | None = None,
    ) -> dict:
        """Execute a completion call through the LiteLLM Router.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0-2).
            metadata: Additional metadata to include in the call.

        Returns:
            Dict with content, model, and usage.

        Raises:
            TransientProviderError: Retryable provider failure or empty output.
            ProviderRejectedError: Non-retryable request rejection.
            ConfigurationError: Invalid credentials.
        """
        try:
            response = await self.router.acompletion(
                model=SUMMARY_GROUP,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                metadata=metadata or {},
            )
        except _CONFIGURATION_ERRORS as exc:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="rejected").inc()
            raise ConfigurationError(f"LLM credentials rejected: {exc}") from exc
        except _TRANSIENT_ERRORS as exc:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="transient").inc()
            raise TransientProviderError(PROVIDER, f"{type(exc).__name__}: {exc}") from exc
        except (litellm.BadRequestError, litellm.NotFoundError) as exc:
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="rejected").inc()
            raise ProviderRejectedError(
                PROVIDER, str(exc), getattr(exc, "status_code", 400)
            ) from exc
        except litellm.APIError as exc:
            status_code = getattr(exc, "status_code", None)
            if status_code is None or status_code == 429 or status_code >= 500:
                pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="transient").inc()
                raise TransientProviderError(PROVIDER, str(exc), status_code) from exc
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="rejected").inc()
            raise ProviderRejectedError(PROVIDER, str(exc), status_code) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="transient").inc()
            raise TransientProviderError(PROVIDER, "empty completion")

        pipeline_provider_calls_total.labels(provider=PROVIDER, outcome="success").inc()

        # Extract usage info
        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return {
            "content": content.strip(),
            "model": response.model,
            "usage": usage,
        }
