from __future__ import annotations

from datetime import datetime, timezone

import numpy as np


_MONEY_UNITS = (
    (1e12, "T"),
    (1e9, "B"),
    (1e6, "M"),
    (1e3, "K"),
)


def format_compact_money(value: object) -> str:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "$0"
    if not np.isfinite(number):
        return "$0"
    sign = "-" if number < 0 else ""
    magnitude = abs(number)
    for threshold, suffix in _MONEY_UNITS:
        if magnitude >= threshold:
            scaled = magnitude / threshold
            digits = 0 if scaled >= 100 else 1 if scaled >= 10 else 2
            text = f"{scaled:.{digits}f}"
            if "." in text:
                text = text.rstrip("0").rstrip(".")
            return f"${sign}{text}{suffix}"
    return f"${sign}{round(magnitude):,.0f}"


def format_money(value: object) -> str:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        number = 0.0
    return f"${number:,.0f}"


def format_full_date_utc(ms: object) -> str:
    try:
        stamp = datetime.fromtimestamp(float(ms) / 1000, tz=timezone.utc)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError, OSError):
        return ""
    return f"{stamp:%B} {stamp.day}, {stamp.year}"
