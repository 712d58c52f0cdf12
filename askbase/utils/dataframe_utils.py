from __future__ import annotations

import datetime as dt
import math
from decimal import Decimal
from typing import Any, Dict, List

import numpy as np
import pandas as pd


def normalize_value(value: Any) -> Any:
    """Coerce a driver/pandas scalar into text, number, boolean or None.

    Timestamps become ISO-8601 text so rows can be serialized and compared
    against LLM answers the same way everywhere.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, np.datetime64):
        value = pd.Timestamp(value)
        return None if value is pd.NaT else value.isoformat()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, (pd.Timestamp, dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, dt.timedelta):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (int, str)):
        return value
    return str(value)


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a result DataFrame into JSON-safe rows, preserving column order."""
    columns = [str(c) for c in df.columns]
    records: List[Dict[str, Any]] = []
    for row in df.itertuples(index=False, name=None):
        records.append({col: normalize_value(val) for col, val in zip(columns, row)})
    return records
