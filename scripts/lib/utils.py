"""
Utility functions for the P3 Proposal Dashboard.
Retry policy, ID batching, timestamp parsing, safe division and atomic
JSON writes.

Usage:
    from scripts.lib.utils import retry_with_backoff, chunked, parse_ts
"""
import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

_DATETIME = TypeAdapter(datetime)

T = TypeVar("T")


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    The first retry waits base_delay seconds and every further retry waits
    `multiplier` times longer. After max_retries retries the last exception
    is re-raised unchanged.

    Args:
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        multiplier: Growth factor of the delay per attempt.
        exceptions: Exception types that trigger a retry.
        sleep: Sleep function (swapped out in tests).
    """
    def _log_retry(retry_state) -> None:
        name = getattr(retry_state.fn, "__name__", "call")
        logger.warning(
            "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
            name,
            retry_state.attempt_number,
            max_retries + 1,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=multiplier),
        retry=retry_if_exception_type(exceptions),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most `size` items."""
    if size < 1:
        raise ValueError("size must be positive")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def unique(items: Iterable[Optional[T]]) -> List[T]:
    """De-duplicate while keeping first-seen order; falsy entries are dropped."""
    seen = set()
    out: List[T] = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def parse_ts(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or datetime) to a timezone-aware UTC datetime.
    Naive values are taken as UTC. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        # Any number of fractional digits, as PostgREST trims trailing zeros
        try:
            dt = _DATETIME.validate_python(str(value).strip())
        except ValidationError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of complete days from start to end (negative if end is earlier)."""
    delta = end - start
    days = abs(delta).days
    return days if delta.total_seconds() >= 0 else -days


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Zero-safe division."""
    if not denominator:
        return default
    return numerator / denominator


def now_utc() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def atomic_write_json(data: Dict, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.

    Returns:
        True if successful, False otherwise.
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)

        os.replace(temp_path, file_path)
        logger.debug("Atomically wrote JSON to %s", file_path)
        return True

    except OSError as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        return False
