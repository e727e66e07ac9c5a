"""
P3 Report Generator
=====================
Computes the P3 attribution dashboard for one time period and writes it as
JSON. The file is written atomically so a reader never sees a partial report.

Outputs:
    - data/processed/p3_dashboard_<period>.json   (default location)

Usage:
    python scripts/generate_p3_report.py
    python scripts/generate_p3_report.py --period year_to_date
    python scripts/generate_p3_report.py --period month_to_date --month 2025-03
    python scripts/generate_p3_report.py --output reports/p3.json
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from models.p3_models import TimePeriod  # noqa: E402
from scripts.lib.config import load_settings  # noqa: E402
from scripts.lib.errors import DashboardError  # noqa: E402
from scripts.lib.logger import setup_logger  # noqa: E402
from scripts.lib.supabase_client import RecordStore  # noqa: E402
from scripts.lib.utils import atomic_write_json  # noqa: E402
from scripts.p3.service import compute_dashboard  # noqa: E402

logger = setup_logger("generate_p3_report")

PROCESSED_DIR = PROJECT_ROOT / "data" / "processed"


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Compute P3 meeting-to-deal attribution and write a JSON report",
    )
    parser.add_argument(
        "--period",
        choices=[p.value for p in TimePeriod],
        default=TimePeriod.ALL_TIME.value,
        help="Time period selector (default: all_time)",
    )
    parser.add_argument(
        "--month",
        type=str,
        default=None,
        help="Target month as YYYY-MM, only used with month_to_date",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output file (default: data/processed/p3_dashboard_<period>.json)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Business-rule YAML (default: configs/p3_attribution.yaml or P3_CONFIG_PATH)",
    )
    parser.add_argument(
        "--skip-orphans",
        action="store_true",
        help="Skip the deals-without-P3 lookup",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, store=None) -> int:
    """Main entry point. Returns the process exit code."""
    args = _parse_args(argv)
    output = Path(args.output) if args.output else PROCESSED_DIR / f"p3_dashboard_{args.period}.json"

    logger.info("P3 report generator starting")
    logger.info("  Period: %s", args.period)
    logger.info("  Month: %s", args.month or "-")
    logger.info("  Output: %s", output)

    try:
        settings = load_settings(args.config)
        store = store or RecordStore(page_size=settings.page_size)
        dashboard = compute_dashboard(
            store, args.period, args.month,
            settings=settings, include_orphans=not args.skip_orphans,
        )
    except DashboardError as e:
        logger.error("P3 report failed: %s", e)
        return 1

    if not atomic_write_json(dashboard.model_dump(mode="json"), output):
        logger.error("Could not write report to %s", output)
        return 1

    summary = dashboard.summary
    logger.info("=== P3 Report Complete ===")
    logger.info("  Employees: %d", summary.employee_count)
    logger.info("  Meetings: %d", summary.total_meetings)
    logger.info("  Win rate: %.1f%%", summary.win_rate_pct)
    logger.info("  Top performer: %s", summary.top_performer or "-")
    logger.info("  JSON: %s", output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
