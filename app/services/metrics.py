"""Timing helpers shared by the read and links endpoints."""

import time
from datetime import datetime, timezone

from app.models.read_response import Metrics


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_ms() -> float:
    return time.time() * 1000


def format_duration(duration_ms: float) -> str:
    """Format a duration as ``"12.34ms"``, ``"1.23s"`` or ``"1m 2.34s"``."""
    if duration_ms < 1000:
        return f"{duration_ms:.2f}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds - minutes * 60:.2f}s"


def build_metrics(start_ms: float, end_ms: float) -> Metrics:
    duration = end_ms - start_ms
    return Metrics(
        readable_duration=format_duration(duration),
        duration_ms=duration,
        start_time_ms=start_ms,
        end_time_ms=end_ms,
    )


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) as an aware datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
