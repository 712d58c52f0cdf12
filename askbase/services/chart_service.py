from __future__ import annotations

import math
import re
from decimal import Decimal
from itertools import cycle, islice
from typing import Any, Dict, List, Optional

from askbase.utils.logger import logger

CHART_PATTERNS: Dict[str, List["re.Pattern[str]"]] = {
    "bar": [
        re.compile(r"\b(bar|bar chart|bar graph|bars)\b"),
        re.compile(r"\b(show|display|create|generate|plot)\s+.*\b(bar)\b"),
        re.compile(r"\b(visualize|visualise)\s+.*\b(bar)\b"),
    ],
    "line": [
        re.compile(r"\b(line|line chart|line graph|trend|trends)\b"),
        re.compile(r"\b(show|display|create|generate|plot)\s+.*\b(line)\b"),
        re.compile(r"\b(visualize|visualise)\s+.*\b(line)\b"),
        re.compile(r"\b(over time|time series|timeline)\b"),
    ],
    "pie": [
        re.compile(r"\b(pie|pie chart|pie graph|percentage|proportion|distribution)\b"),
        re.compile(r"\b(show|display|create|generate|plot)\s+.*\b(pie)\b"),
        re.compile(r"\b(visualize|visualise)\s+.*\b(pie)\b"),
        re.compile(r"\b(breakdown|composition|split)\b"),
    ],
    "scatter": [
        re.compile(r"\b(scatter|scatter plot|scatter chart|correlation)\b"),
        re.compile(r"\b(show|display|create|generate|plot)\s+.*\b(scatter)\b"),
        re.compile(r"\b(visualize|visualise)\s+.*\b(scatter)\b"),
        re.compile(r"\b(relationship between|correlation between)\b"),
    ],
}

VISUALIZATION_KEYWORDS = ("chart", "graph", "plot", "visualize", "visualise", "diagram")

PRIMARY_COLOR = "rgba(59, 130, 246, 1)"
PIE_PALETTE = [
    "rgba(59, 130, 246, 0.8)",
    "rgba(147, 51, 234, 0.8)",
    "rgba(236, 72, 153, 0.8)",
    "rgba(34, 197, 94, 0.8)",
    "rgba(251, 146, 60, 0.8)",
]


def detect_chart_request(question: str) -> Dict[str, Any]:
    """Classify whether ``question`` asks for a chart and which kind.

    Type-specific patterns win with ``high`` confidence (checked in the order
    bar, line, pie, scatter); a bare visualization word defaults to a bar
    chart with ``medium`` confidence.
    """
    lowered = (question or "").lower()

    for chart_type, patterns in CHART_PATTERNS.items():
        if any(pattern.search(lowered) for pattern in patterns):
            return {"type": chart_type, "requested": True, "confidence": "high"}

    if any(keyword in lowered for keyword in VISUALIZATION_KEYWORDS):
        return {"type": "bar", "requested": True, "confidence": "medium"}

    return {"type": None, "requested": False, "confidence": "none"}


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _label(value: Any) -> str:
    return "null" if value is None else str(value)


def _title(text: str) -> Dict[str, Any]:
    return {"display": True, "text": text}


def _series(results: List[Dict[str, Any]], label_col: str, value_col: str):
    labels: List[str] = []
    values: List[float] = []
    for row in results:
        number = _to_number(row.get(value_col))
        if number is None:
            continue
        labels.append(_label(row.get(label_col)))
        values.append(number)
    return labels, values


def _bar(labels: List[str], values: List[float], label_col: str, value_col: str) -> Dict[str, Any]:
    return {
        "type": "bar",
        "data": {
            "labels": labels,
            "datasets": [
                {
                    "label": value_col,
                    "data": values,
                    "backgroundColor": "rgba(59, 130, 246, 0.8)",
                    "borderColor": PRIMARY_COLOR,
                    "borderWidth": 1,
                }
            ],
        },
        "options": {"responsive": True, "plugins": {"title": _title(f"{value_col} by {label_col}")}},
    }


def _line(labels: List[str], values: List[float], label_col: str, value_col: str) -> Dict[str, Any]:
    return {
        "type": "line",
        "data": {
            "labels": labels,
            "datasets": [
                {
                    "label": value_col,
                    "data": values,
                    "borderColor": PRIMARY_COLOR,
                    "backgroundColor": "rgba(59, 130, 246, 0.1)",
                    "tension": 0.1,
                }
            ],
        },
        "options": {"responsive": True, "plugins": {"title": _title(f"{value_col} over {label_col}")}},
    }


def _pie(labels: List[str], values: List[float], value_col: str) -> Dict[str, Any]:
    return {
        "type": "pie",
        "data": {
            "labels": labels,
            "datasets": [
                {
                    "data": values,
                    "backgroundColor": list(islice(cycle(PIE_PALETTE), len(values))),
                }
            ],
        },
        "options": {"responsive": True, "plugins": {"title": _title(f"Distribution of {value_col}")}},
    }


def _scatter(results: List[Dict[str, Any]], columns: List[str]) -> Optional[Dict[str, Any]]:
    x_col, y_col, label_col = columns[0], columns[1], columns[2]
    points: List[Dict[str, Any]] = []
    for row in results:
        x = _to_number(row.get(x_col))
        y = _to_number(row.get(y_col))
        if x is None or y is None:
            continue
        points.append({"x": x, "y": y, "label": _label(row.get(label_col))})

    if not points:
        return None

    title = f"{y_col} vs {x_col}"
    return {
        "type": "scatter",
        "data": {
            "datasets": [
                {
                    "label": title,
                    "data": points,
                    "backgroundColor": "rgba(59, 130, 246, 0.6)",
                    "borderColor": PRIMARY_COLOR,
                    "pointRadius": 6,
                }
            ]
        },
        "options": {
            "responsive": True,
            "plugins": {"title": _title(title)},
            "scales": {"x": {"title": _title(x_col)}, "y": {"title": _title(y_col)}},
        },
    }


def generate_chart_data(results: List[Dict[str, Any]], chart_type: Optional[str]) -> Optional[Dict[str, Any]]:
    """Shape result rows into a Chart.js-style config, or None when they do not chart.

    Column 0 is the label and column 1 the value; rows whose value is not
    numeric are skipped. Scatter needs three columns (x, y, point label).
    """
    if not results:
        return None

    try:
        columns = list(results[0].keys())
        if len(columns) < 2:
            return None

        if chart_type in ("bar", "line", "pie"):
            label_col, value_col = columns[0], columns[1]
            labels, values = _series(results, label_col, value_col)
            if not values:
                return None
            if chart_type == "bar":
                return _bar(labels, values, label_col, value_col)
            if chart_type == "line":
                return _line(labels, values, label_col, value_col)
            return _pie(labels, values, value_col)

        if chart_type == "scatter":
            if len(columns) < 3:
                return None
            return _scatter(results, columns)

        return None
    except Exception:  # noqa: BLE001
        logger.exception("Error generating chart data")
        return None
