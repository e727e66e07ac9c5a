"""
P3 Proposal Dashboard — Entry Point
=====================================

Run: python main.py
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger("p3-dashboard")

PORT = int(os.getenv("DASHBOARD_PORT", "8001"))

if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 60)
    logger.info("  P3 PROPOSAL DASHBOARD — Meeting-to-Deal Attribution")
    logger.info("=" * 60)
    logger.info("  Environment : %s", os.getenv("ENVIRONMENT", "development"))
    logger.info("  Server      : http://0.0.0.0:%d", PORT)
    logger.info("  API Docs    : http://localhost:%d/docs", PORT)
    logger.info("  Timeout     : %ss", os.getenv("METRICS_TIMEOUT_SECONDS", "30"))
    logger.info("  Debug       : %s", os.getenv("DEBUG", "false"))
    logger.info("=" * 60)

    uvicorn.run(
        "dashboard.api.main:app",
        host="0.0.0.0",
        port=PORT,
        reload=os.getenv("DEBUG", "false").lower() == "true",
    )
