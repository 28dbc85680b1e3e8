"""FastAPI application factory."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from radscribe.config import RadscribeSettings, load_settings
from radscribe.llm.client import GenerationClient
from radscribe.pipeline import ReportPipeline
from radscribe.server.db import create_session_factory, db_url_for_output_dir, get_engine, init_db
from radscribe.server.ledger import SqlUsageLedger
from radscribe.server.routes.health import router as health_router
from radscribe.server.routes.messages import router as messages_router
from radscribe.server.routes.templates import router as templates_router
from radscribe.server.routes.transcribe import router as transcribe_router
from radscribe.server.routes.usage import router as usage_router
from radscribe.stages.generation import GenerationService
from radscribe.stages.retrieval import HttpVectorSearch, VectorSearchService
from radscribe.stages.transcribe import SpeechToText
from radscribe.templates import YamlTemplateStore

logger = logging.getLogger(__name__)


def create_app(
    settings: RadscribeSettings | None = None,
    db_url: str | None = None,
    generator: GenerationService | None = None,
    search: VectorSearchService | None = None,
    speech: SpeechToText | None = None,
    verbose: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Defaults to :func:`load_settings` (env and .env).
        db_url: Override database URL (e.g. "sqlite://" for in-memory tests).
        generator: Generation service; defaults to :class:`GenerationClient`.
        search: Vector search; defaults to HTTP search when
            ``RADSCRIBE_RETRIEVAL_URL`` is set, otherwise retrieval is off.
        speech: Speech-to-text service for ``/api/transcribe``.
        verbose: When True, the terminal handler shows DEBUG-level messages.

    With ``--reload`` uvicorn calls this factory with no arguments; the CLI
    stashes ``-v`` in ``_RADSCRIBE_VERBOSE`` so the factory can recover it.
    """
    if not verbose and os.environ.get("_RADSCRIBE_VERBOSE") == "1":
        verbose = True

    settings = settings or load_settings()

    if db_url is None:
        from radscribe.logging import setup_logging

        # Log file sits next to the per-install SQLite DB
        setup_logging(output_dir=settings.output_dir, verbose=verbose)
        db_url = settings.db_url or db_url_for_output_dir(settings.output_dir)

    app = FastAPI(title="Radscribe", docs_url="/api/docs", redoc_url=None)

    engine = get_engine(db_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    if search is None and settings.retrieval_url:
        search = HttpVectorSearch(
            settings.retrieval_url,
            settings.retrieval_api_key,
            timeout=settings.retrieval_timeout_seconds,
        )
    generator = generator or GenerationClient(settings)
    templates = YamlTemplateStore(extra_dir=settings.templates_dir)
    ledger = SqlUsageLedger(
        session_factory, settings.default_org_id, credits_granted=settings.credits_granted
    )

    # Shared, request-independent collaborators for dependency lookup in routes
    app.state.settings = settings
    app.state.db_factory = session_factory
    app.state.db_url = db_url
    app.state.templates = templates
    app.state.ledger = ledger
    app.state.speech = speech or SpeechToText(settings)
    app.state.pipeline = ReportPipeline(
        settings,
        templates=templates,
        generator=generator,
        ledger=ledger,
        search=search,
    )

    app.include_router(health_router)
    app.include_router(templates_router)
    app.include_router(messages_router)
    app.include_router(usage_router)
    app.include_router(transcribe_router)

    logger.info(
        "Server ready: provider=%s strictness=%s retrieval=%s",
        settings.llm_provider,
        settings.strictness,
        "on" if search is not None else "off",
    )
    return app
