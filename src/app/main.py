"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events that build the pipeline stages onto app.state, and the v1 API
router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.app.config import Settings, get_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.app.core.retry import RetryPolicy
from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.sessions.aggregator import TranscriptAggregator
from src.app.sessions.errors import ConfigurationError
from src.app.sessions.ingestion.deepgram_client import DeepgramClient
from src.app.sessions.ingestion.ingestor import TranscriptIngestor
from src.app.sessions.lifecycle import SessionLifecycle
from src.app.sessions.pipeline import SessionPipeline
from src.app.sessions.repository import SessionPipelineRepository
from src.app.sessions.safety.analyzer import create_default_analyzer
from src.app.sessions.summaries.dispatcher import NotificationDispatcher
from src.app.sessions.summaries.summarizer import SummarizationEngine
from src.app.services.llm import LLMService

log = structlog.get_logger(__name__)


def init_pipeline(app: FastAPI, settings: Settings) -> None:
    """Build repository, provider clients, and stages onto app.state.

    Provider clients are optional: a missing credential leaves the dependent
    service as None so its endpoints answer 503 instead of blocking startup.
    """
    repository = SessionPipelineRepository(session_factory=get_session)
    lifecycle = SessionLifecycle(repository)
    aggregator = TranscriptAggregator(repository)

    app.state.pipeline_repository = repository
    app.state.session_lifecycle = lifecycle
    app.state.transcript_aggregator = aggregator

    # Transcription provider
    try:
        deepgram = DeepgramClient(
            api_key=settings.DEEPGRAM_API_KEY,
            base_url=settings.DEEPGRAM_BASE_URL,
            model=settings.DEEPGRAM_MODEL,
            timeout=settings.TRANSCRIPTION_TIMEOUT,
        )
        app.state.transcript_ingestor = TranscriptIngestor(
            repository=repository,
            transcription_client=deepgram,
            retry_policy=RetryPolicy(
                max_attempts=settings.INGEST_MAX_ATTEMPTS,
                base_delay=settings.INGEST_RETRY_BASE_DELAY,
                max_delay=settings.RETRY_MAX_DELAY,
            ),
            lifecycle=lifecycle,
            batch_size=settings.SEGMENT_BATCH_SIZE,
            skip_existing=settings.INGEST_SKIP_EXISTING,
        )
        log.info("pipeline.ingestor_initialized")
    except ConfigurationError:
        log.warning("pipeline.ingestor_not_configured", exc_info=True)
        app.state.transcript_ingestor = None

    # Language-model provider
    try:
        llm_service = LLMService(settings)
        summarizer = SummarizationEngine(
            repository=repository,
            aggregator=aggregator,
            llm_service=llm_service,
            retry_policy=RetryPolicy(
                max_attempts=settings.SUMMARY_MAX_ATTEMPTS,
                base_delay=settings.SUMMARY_RETRY_BASE_DELAY,
                max_delay=settings.RETRY_MAX_DELAY,
            ),
            enabled=settings.SUMMARY_ENABLED,
        )
        app.state.session_pipeline = SessionPipeline(
            repository=repository,
            lifecycle=lifecycle,
            aggregator=aggregator,
            analyzer=create_default_analyzer(repository, settings),
            summarizer=summarizer,
            dispatcher=NotificationDispatcher(repository),
        )
        log.info("pipeline.orchestrator_initialized")
    except ConfigurationError:
        log.warning("pipeline.summarizer_not_configured", exc_info=True)
        app.state.session_pipeline = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry, and pipeline on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    init_pipeline(app, settings)

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Session Intelligence API",
        version="0.1.0",
        description="Post-session transcript, safety, summary, and notification pipeline",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Include v1 API router (health, sessions)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
