"""
P3 Proposal Dashboard — API Server
====================================

Live API layer computing per-employee P3 meeting attribution from the
Supabase record store.

Route groups:
  /api/health              - Health check
  /api/metrics/*           - Per-employee metrics and team summary
  /api/deals/*             - Deals without P3, removed-deals audit
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scripts.lib.errors import DashboardError

load_dotenv()

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting P3 Proposal Dashboard...")

    # Business rules are loaded once; a bad config file fails startup
    from dashboard.api.dependencies import get_settings
    settings = get_settings()
    logger.info(
        "Attribution rules: label=%r, eligible types=%s, timeout=%ss",
        settings.p3_label, ", ".join(settings.eligible_deal_types), settings.timeout_seconds,
    )

    # Supabase connection check
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        logger.info("Supabase connected")
    except DashboardError as e:
        logger.warning("Supabase not available: %s", e)

    logger.info("P3 Proposal Dashboard ready")
    yield
    logger.info("Shutting down P3 Proposal Dashboard...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="P3 Proposal Dashboard",
    version=VERSION,
    description="Meeting-to-deal attribution for P3 proposal meetings",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Include Routers ──────────────────────────────────────────

from dashboard.api.routers.metrics import router as metrics_router  # noqa: E402
from dashboard.api.routers.deals import router as deals_router  # noqa: E402

app.include_router(metrics_router)
app.include_router(deals_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with service status."""
    supabase_ok = False
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        supabase_ok = True
    except DashboardError:
        pass

    return {
        "status": "healthy",
        "service": "P3 Proposal Dashboard",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "supabase": supabase_ok,
        },
    }
