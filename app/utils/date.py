"""
Date parsing utilities for flexible date format handling.

Spreadsheets from brokers, facilities and payroll exports mix US and
European day orders, ISO strings and real date cells. Everything funnels
through this module so imported dates come out as ISO 8601 ``YYYY-MM-DD``.
"""

import pandas as pd
from typing import Any, Optional
import re
from datetime import date, datetime, time
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    # Emit a single summary when suppression starts, then periodically.
    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def format_date_cell(value: Any) -> Any:
    """
    Render a date-typed spreadsheet cell as text.

    ``datetime``/``date``/``Timestamp`` cells become ``YYYY-MM-DD`` and bare
    ``time`` cells ``HH:MM:SS``; any other value is returned unchanged.
    """
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, time):
        return value.strftime('%H:%M:%S')
    return value


def parse_flexible_date(value: Any, *, log_context: Optional[str] = None, log_failures: bool = True) -> Optional[str]:
    """
    Parse a date value from various formats and return an ISO 8601 date string.

    Supports formats:
    - ISO 8601: "2024-09-04T23:09:18Z"
    - DD/MM/YYYY: "20/10/2025"
    - MM/DD/YYYY: "10/20/2025"
    - YYYY-MM-DD: "2025-10-20"
    - And many others via pandas inference

    Args:
        value: Date value in any supported format

    Returns:
        ``YYYY-MM-DD`` string or None if parsing fails
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None

    if isinstance(value, (datetime, date, pd.Timestamp)):
        return format_date_cell(value)

    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None

    parse_attempts = []
    dt = None

    if isinstance(value, str):
        numeric_match = re.match(r'^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}', value)
        if numeric_match:
            date_segment = numeric_match.group(0)
            parts = re.split(r'[/-]', date_segment)
            try:
                first = int(parts[0])
                second = int(parts[1])
            except ValueError:
                first = second = -1  # Trigger fallback behaviour

            # Decide whether day-first is more plausible
            if first > 12 and second <= 31:
                dayfirst_preferred = True
            elif second > 12 and first <= 12:
                dayfirst_preferred = False
            else:
                dayfirst_preferred = settings.date_default_dayfirst

            preferred_label = "dayfirst" if dayfirst_preferred else "monthfirst"
            parse_attempts.append((
                preferred_label,
                lambda v, df=dayfirst_preferred: pd.to_datetime(v, dayfirst=df, errors='raise')
            ))

            # Always try the alternate interpretation as a fallback
            alternate = not dayfirst_preferred
            parse_attempts.append((
                "alternate_monthfirst" if dayfirst_preferred else "alternate_dayfirst",
                lambda v, df=alternate: pd.to_datetime(v, dayfirst=df, errors='raise')
            ))

    # Fallback: let pandas infer the format (default behavior)
    parse_attempts.append(("default", lambda v: pd.to_datetime(v, errors='raise')))

    last_error = None
    for attempt_name, attempt in parse_attempts:
        try:
            dt = attempt(value)
            break
        except Exception as exc:
            last_error = exc
            continue

    if dt is None or pd.isna(dt):
        if log_failures:
            error_to_log = last_error or Exception("Unable to determine format")
            _record_parse_failure(value, log_context, error_to_log)
        return None

    return dt.strftime('%Y-%m-%d')
