"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from agentcron.core.config.schema import Config
from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.poller import JobExecutor, JobPoller
from agentcron.storage.store import Store

_bearer_scheme = HTTPBearer(auto_error=False)


def get_config(request: Request) -> Config:
    """Get Config singleton from app state."""
    return request.app.state.config


def get_store(request: Request) -> Store:
    """Get Store singleton from app state."""
    return request.app.state.store


def get_poller(request: Request) -> JobPoller:
    return request.app.state.poller


def get_executor(request: Request) -> JobExecutor:
    return request.app.state.executor


def get_breaker(request: Request) -> FailureCircuitBreaker:
    return request.app.state.breaker


async def verify_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """Require ``Authorization: Bearer <cron_secret>``.

    When no secret is configured (cron_secret=""), every request passes.
    """
    config: Config = request.app.state.config
    if not config.dispatch_auth_enabled:
        return
    if credentials is None or not secrets.compare_digest(
        credentials.credentials, config.auth.cron_secret
    ):
        logger.warning(f"Unauthorized request to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")
