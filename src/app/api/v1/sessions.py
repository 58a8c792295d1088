"""REST endpoints that trigger the post-session pipeline.

External schedulers and webhooks call these to register sessions, ingest
one speaker channel, finalize a session, and run the remaining stages. Stage
objects are read from app.state (built in main.lifespan); a missing one
answers 503.

Pipeline errors map to HTTP status codes in ``_to_http``; provider error
details are never echoed to callers.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.app.sessions.errors import (
    ConfigurationError,
    InvalidTransitionError,
    PermanentInputError,
    PersistenceError,
    PipelineError,
    ProviderRejectedError,
    RetryExhaustedError,
    SessionNotFoundError,
    SessionNotReadyError,
    TransientProviderError,
)
from src.app.sessions.pipeline import PipelineResult
from src.app.sessions.schemas import (
    ChannelIngestion,
    IngestRequest,
    PipelineSession,
    SessionCreate,
    SessionStage,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class IngestResponse(BaseModel):
    """Result of ingesting one speaker channel."""

    session_id: str
    speaker_id: str
    segments_stored: int


class SessionDetail(PipelineSession):
    """A session with the latest ingestion status of each speaker channel."""

    ingestions: list[ChannelIngestion] = Field(default_factory=list)


class StageResponse(BaseModel):
    """Current lifecycle stage of a session."""

    session_id: str
    stage: SessionStage


class TranscriptResponse(BaseModel):
    """Aggregated chronological transcript."""

    session_id: str
    transcript: str


# ── Error Mapping ────────────────────────────────────────────────────────────

_STATUS_BY_ERROR: list[tuple[type[PipelineError], int]] = [
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionNotReadyError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (PermanentInputError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RetryExhaustedError, status.HTTP_502_BAD_GATEWAY),
    (TransientProviderError, status.HTTP_502_BAD_GATEWAY),
    (ProviderRejectedError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]

# Errors whose message is safe to return verbatim
_CLIENT_FACING = (SessionNotFoundError, SessionNotReadyError, InvalidTransitionError)


def _to_http(exc: PipelineError) -> HTTPException:
    """Translate a pipeline error into an HTTPException."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    if isinstance(exc, _CLIENT_FACING):
        detail = str(exc)
    else:
        detail = f"Pipeline stage failed ({type(exc).__name__})"

    log_method = logger.error if status_code >= 500 else logger.info
    log_method("sessions_api.pipeline_error", error=str(exc), status_code=status_code)
    return HTTPException(status_code=status_code, detail=detail)


# ── Dependency Helpers ───────────────────────────────────────────────────────


def _get_repository(request: Request) -> Any:
    """Retrieve SessionPipelineRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "pipeline_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline repository not initialized",
        )
    return repo


def _get_ingestor(request: Request) -> Any:
    """Retrieve TranscriptIngestor from app.state, 503 if not available."""
    ingestor = getattr(request.app.state, "transcript_ingestor", None)
    if ingestor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transcript ingestor not initialized (Deepgram API key may not be configured)",
        )
    return ingestor


def _get_lifecycle(request: Request) -> Any:
    """Retrieve SessionLifecycle from app.state, 503 if not available."""
    lifecycle = getattr(request.app.state, "session_lifecycle", None)
    if lifecycle is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session lifecycle not initialized",
        )
    return lifecycle


def _get_aggregator(request: Request) -> Any:
    """Retrieve TranscriptAggregator from app.state, 503 if not available."""
    aggregator = getattr(request.app.state, "transcript_aggregator", None)
    if aggregator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transcript aggregator not initialized",
        )
    return aggregator


def _get_pipeline(request: Request) -> Any:
    """Retrieve SessionPipeline from app.state, 503 if not available."""
    pipeline = getattr(request.app.state, "session_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session pipeline not initialized (LLM API key may not be configured)",
        )
    return pipeline


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post(
    "",
    response_model=PipelineSession,
    status_code=status.HTTP_201_CREATED,
)
async def register_session(body: SessionCreate, request: Request) -> PipelineSession:
    """Register a session so its speaker channels can be ingested."""
    repo = _get_repository(request)
    try:
        session = await repo.create_session(body)
    except PipelineError as exc:
        raise _to_http(exc) from exc
    logger.info(
        "sessions_api.session_registered",
        session_id=str(session.id),
        session_kind=session.session_kind.value,
    )
    return session


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: uuid.UUID, request: Request) -> SessionDetail:
    """Current state of a session: stage, summary, and per-channel ingestion."""
    repo = _get_repository(request)
    try:
        session = await repo.get_session(str(session_id))
        if session is None:
            raise SessionNotFoundError(str(session_id))
        ingestions = await repo.list_ingestions(str(session_id))
    except PipelineError as exc:
        raise _to_http(exc) from exc
    return SessionDetail(**session.model_dump(), ingestions=ingestions)


@router.post("/{session_id}/transcripts", response_model=IngestResponse)
async def ingest_transcript(
    session_id: uuid.UUID,
    body: IngestRequest,
    request: Request,
) -> IngestResponse:
    """Transcribe and store one speaker channel's recording."""
    ingestor = _get_ingestor(request)
    try:
        stored = await ingestor.ingest(
            str(session_id),
            body.speaker_id,
            body.audio_url,
            language=body.language,
        )
    except PipelineError as exc:
        raise _to_http(exc) from exc
    return IngestResponse(
        session_id=str(session_id),
        speaker_id=body.speaker_id,
        segments_stored=stored,
    )


@router.post("/{session_id}/finalize", response_model=StageResponse)
async def finalize_session(session_id: uuid.UUID, request: Request) -> StageResponse:
    """Signal that every speaker channel of the session has been ingested."""
    lifecycle = _get_lifecycle(request)
    try:
        session = await lifecycle.finalize(str(session_id))
    except PipelineError as exc:
        raise _to_http(exc) from exc
    return StageResponse(session_id=str(session_id), stage=session.stage)


@router.post("/{session_id}/process", response_model=PipelineResult)
async def process_session(session_id: uuid.UUID, request: Request) -> PipelineResult:
    """Run aggregation, safety analysis, summarization, and dispatch."""
    pipeline = _get_pipeline(request)
    try:
        return await pipeline.process(str(session_id))
    except PipelineError as exc:
        raise _to_http(exc) from exc


@router.get("/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(session_id: uuid.UUID, request: Request) -> TranscriptResponse:
    """Aggregated transcript text; empty when nothing has been ingested."""
    repo = _get_repository(request)
    aggregator = _get_aggregator(request)
    try:
        if await repo.get_session(str(session_id)) is None:
            raise SessionNotFoundError(str(session_id))
        transcript = await aggregator.aggregate(str(session_id))
    except PipelineError as exc:
        raise _to_http(exc) from exc
    return TranscriptResponse(session_id=str(session_id), transcript=transcript)
