"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from agentcron import __version__
from agentcron.api.routes import router
from agentcron.core.config.loader import load_config
from agentcron.core.config.schema import Config
from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.poller import JobExecutor, JobPoller
from agentcron.core.jobs.service import PollingService
from agentcron.core.jobs.workflow import WorkflowRunner
from agentcron.storage.store import Store


def build_engine(config: Config, store: Store, http_transport=None) -> dict:
    """Wire breaker -> runner -> executor -> poller from config."""
    breaker = FailureCircuitBreaker(store, threshold=config.scheduler.failure_threshold)
    runner = WorkflowRunner(store, config, breaker=breaker, http_transport=http_transport)
    executor = JobExecutor(runner)
    poller = JobPoller(store, executor, batch_size=config.scheduler.batch_size)
    return {"breaker": breaker, "runner": runner, "executor": executor, "poller": poller}


def create_app(config: Config | None = None, store: Store | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``config`` / ``store`` default to ``load_config()`` and the configured
    SQLite path at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: Config → Store → engine → PollingService (optional). Shutdown: drain."""
        cfg = config or load_config()
        db = store or Store(str(cfg.db_path))
        engine = build_engine(cfg, db)

        service = None
        if cfg.scheduler.enabled:
            service = PollingService(engine["poller"], interval_s=cfg.scheduler.poll_interval_s)
            await service.start()

        app.state.config = cfg
        app.state.store = db
        app.state.service = service
        for name, obj in engine.items():
            setattr(app.state, name, obj)

        logger.info(f"agentcron API started — model: {cfg.assistant.model}")
        yield

        if service:
            await service.stop()
        await engine["executor"].shutdown()
        logger.info("agentcron API shutting down")

    app = FastAPI(
        title="agentcron API",
        description="Scheduled-job execution engine for agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
