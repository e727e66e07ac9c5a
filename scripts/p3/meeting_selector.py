"""
Meeting Selector
=================
Loads the "P3 - Proposal" meetings for a time window.

The read is the only retried call in a run: transient store failures back
off exponentially and, once retries are exhausted, abort the whole run with
MetricsComputationError. The returned list is sorted by (create_date, id)
so attribution order never depends on the backend's row order.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List

from pydantic import ValidationError

from models.p3_models import Meeting
from scripts.lib.config import Settings
from scripts.lib.errors import MetricsComputationError, StoreReadError
from scripts.lib.logger import setup_logger
from scripts.lib.supabase_client import MEETINGS, Filter
from scripts.lib.utils import retry_with_backoff
from scripts.p3.periods import Window, date_filters

logger = setup_logger("meeting_selector")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def build_meeting_filters(window: Window, settings: Settings) -> List[Filter]:
    """Store predicates for P3 meetings inside the window."""
    return [Filter(settings.meeting_type_field, "eq", settings.p3_label)] + date_filters(window)


def meeting_sort_key(meeting: Meeting):
    return (meeting.created_at or _EPOCH, meeting.id)


def select_p3_meetings(
    store,
    window: Window,
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Meeting]:
    """
    Fetch P3 meetings for the window, retrying transient store errors.

    Raises:
        MetricsComputationError: When every retry failed.
    """
    filters = build_meeting_filters(window, settings)
    logger.info(
        "Fetching P3 meetings for %s (%d filters)", window.period.value, len(filters),
    )

    fetch = retry_with_backoff(
        max_retries=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
        multiplier=settings.retry_multiplier,
        exceptions=(StoreReadError,),
        sleep=sleep,
    )(store.fetch_by_filter)

    try:
        rows = fetch(MEETINGS, filters)
    except StoreReadError as e:
        logger.error("P3 meeting selection failed after retries: %s", e)
        raise MetricsComputationError("meeting_selection", e) from e

    meetings: List[Meeting] = []
    for row in rows:
        try:
            meetings.append(Meeting.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping malformed meeting row %s: %s", row.get("id"), e)

    meetings.sort(key=meeting_sort_key)
    logger.info("Selected %d P3 meetings", len(meetings))
    return meetings
