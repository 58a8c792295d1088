"""Error taxonomy for the post-session pipeline.

Only TransientProviderError is retried by the shared RetryPolicy. Everything
else either fails fast (configuration, rejected requests, persistence) or is
skipped by the stage that raised it (insufficient content).
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class TransientProviderError(PipelineError):
    """Network, timeout, rate limit, or 5xx failure from an external provider."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderRejectedError(PipelineError):
    """Provider refused the request (4xx other than 429). Not retried."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} rejected request ({status_code}): {message}")


class RetryExhaustedError(PipelineError):
    """Terminal failure after every attempt of a retried operation failed.

    Attributes:
        operation: Name of the retried operation.
        attempts: Number of attempts made.
        last_error: Exception raised by the final attempt.
    """

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )


class PermanentInputError(PipelineError):
    """Input cannot be processed (e.g. transcript too short). Skipped, never retried."""


class PersistenceError(PipelineError):
    """Datastore read/write failure. Aborts the current stage."""


class ConfigurationError(PipelineError):
    """Missing or invalid provider configuration. Raised immediately."""


class SessionNotFoundError(PipelineError):
    """No session row exists for the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionNotReadyError(PipelineError):
    """Session has not been finalized for aggregation yet."""

    def __init__(self, session_id: str, stage: str) -> None:
        self.session_id = session_id
        self.stage = stage
        super().__init__(
            f"Session {session_id} is not ready for processing (stage={stage})"
        )


class InvalidTransitionError(PipelineError):
    """Requested lifecycle transition skips or reverses a state."""

    def __init__(self, session_id: str, current: str, target: str) -> None:
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid lifecycle transition for session {session_id}: {current} -> {target}"
        )
