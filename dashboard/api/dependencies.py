"""
P3 Dashboard — Shared Router Dependencies
===========================================
Store and settings providers (overridable in tests through
`app.dependency_overrides`) plus the runner that bounds every computation
by the request timeout and maps dashboard errors onto HTTP responses.
"""
from __future__ import annotations

import threading
from functools import lru_cache

from fastapi import HTTPException

from scripts.lib.config import Settings, load_settings
from scripts.lib.errors import (
    ComputationError,
    ComputationTimeoutError,
    DashboardError,
    DataError,
    StoreError,
    StoreNotConfiguredError,
)
from scripts.lib.logger import setup_logger
from scripts.lib.supabase_client import RecordStore
from scripts.p3.service import run_with_timeout

logger = setup_logger("api_dependencies")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def get_store() -> RecordStore:
    settings = get_settings()
    return RecordStore(page_size=settings.page_size)


def to_http_error(error: DashboardError) -> HTTPException:
    """Translate a dashboard error into an HTTPException with a readable detail."""
    if isinstance(error, ComputationTimeoutError):
        return HTTPException(status_code=504, detail=error.message)
    if isinstance(error, DataError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, StoreNotConfiguredError):
        return HTTPException(status_code=503, detail=error.message)
    if isinstance(error, (ComputationError, StoreError)):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


async def compute(func, *args, settings: Settings, **kwargs):
    """Run func(*args, settings=settings, **kwargs) under the request timeout."""
    try:
        return await run_with_timeout(
            func, *args, timeout=settings.timeout_seconds,
            cancelled=threading.Event(), settings=settings, **kwargs,
        )
    except DashboardError as e:
        logger.error("%s failed: %s", getattr(func, "__name__", "computation"), e)
        raise to_http_error(e) from e
