# /event-training/src/event_training/utils/timestamps.py

"""
Timestamp parsing for dataset rows.

Accepts unix epochs (int/float or numeric strings), year-month strings which
resolve to the last second of that month, and any format pandas can infer.
Anything unparseable yields None so callers can skip the row.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

import numpy as np
import pandas as pd

YEAR_MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
EPOCH_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Parse a raw cell value into a pandas Timestamp, or None."""
    if value is None:
        return None

    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value

    if isinstance(value, (datetime, date)):
        return pd.Timestamp(value)

    if isinstance(value, (bool, np.bool_)):
        return None

    if isinstance(value, (int, float, np.integer, np.floating)):
        return _from_epoch(value)

    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    if EPOCH_PATTERN.match(trimmed):
        return _from_epoch(float(trimmed))

    try:
        if YEAR_MONTH_PATTERN.match(trimmed):
            month_start = pd.Timestamp(f"{trimmed}-01")
            return month_start + pd.offsets.MonthEnd(0) + pd.Timedelta(hours=23, minutes=59, seconds=59)

        parsed = pd.Timestamp(trimmed)
    except (ValueError, TypeError, OverflowError):
        return None

    return None if pd.isna(parsed) else parsed


def _from_epoch(value: Any) -> Optional[pd.Timestamp]:
    try:
        seconds = float(value)
        if not np.isfinite(seconds):
            return None
        return pd.Timestamp(int(seconds), unit="s")
    except (ValueError, TypeError, OverflowError):
        return None


def epoch_seconds(timestamp: pd.Timestamp) -> float:
    """Seconds since the unix epoch, timezone-aware or naive."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.tz_convert("UTC").tz_localize(None)
    return (timestamp - pd.Timestamp(0)) / pd.Timedelta(seconds=1)
