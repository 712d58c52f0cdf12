import pytest

from askbase.services.chart_service import PIE_PALETTE, detect_chart_request, generate_chart_data


def test_detect_bar_chart_request():
    assert detect_chart_request("create a bar chart of sales by category") == {
        "type": "bar",
        "requested": True,
        "confidence": "high",
    }


@pytest.mark.parametrize(
    "question, chart_type",
    [
        ("show the revenue trend", "line"),
        ("orders over time", "line"),
        ("percentage of orders per region", "pie"),
        ("give me a breakdown of spend", "pie"),
        ("relationship between price and rating", "scatter"),
        ("scatter plot of height and weight", "scatter"),
    ],
)
def test_detect_specific_chart_types(question, chart_type):
    result = detect_chart_request(question)
    assert result["type"] == chart_type
    assert result["confidence"] == "high"


def test_generic_visualization_defaults_to_bar():
    assert detect_chart_request("Visualize customers per country") == {
        "type": "bar",
        "requested": True,
        "confidence": "medium",
    }


def test_no_chart_requested():
    assert detect_chart_request("show total amount") == {
        "type": None,
        "requested": False,
        "confidence": "none",
    }


def test_unparseable_values_give_no_chart():
    assert generate_chart_data([{"a": "x", "b": "not-a-number"}], "bar") is None


def test_single_column_gives_no_chart():
    assert generate_chart_data([{"a": 1}], "bar") is None
    assert generate_chart_data([], "bar") is None


def test_bar_chart_skips_non_numeric_rows():
    rows = [
        {"category": "Electronics", "total": 1500},
        {"category": "Furniture", "total": "495.5"},
        {"category": "Unknown", "total": None},
        {"category": "Office", "total": "n/a"},
    ]
    chart = generate_chart_data(rows, "bar")
    assert chart["type"] == "bar"
    assert chart["data"]["labels"] == ["Electronics", "Furniture"]
    dataset = chart["data"]["datasets"][0]
    assert dataset["data"] == [1500.0, 495.5]
    assert dataset["label"] == "total"
    assert chart["options"]["responsive"] is True
    assert chart["options"]["plugins"]["title"] == {"display": True, "text": "total by category"}


def test_line_chart_title():
    chart = generate_chart_data([{"month": "2024-01", "revenue": 10}], "line")
    assert chart["options"]["plugins"]["title"]["text"] == "revenue over month"
    assert chart["data"]["datasets"][0]["tension"] == 0.1


def test_pie_chart_cycles_palette():
    rows = [{"label": f"c{i}", "value": i} for i in range(7)]
    chart = generate_chart_data(rows, "pie")
    colors = chart["data"]["datasets"][0]["backgroundColor"]
    assert len(colors) == 7
    assert colors[:5] == PIE_PALETTE
    assert colors[5] == PIE_PALETTE[0]
    assert chart["options"]["plugins"]["title"]["text"] == "Distribution of value"


def test_scatter_needs_three_columns():
    assert generate_chart_data([{"x": 1, "y": 2}], "scatter") is None


def test_scatter_points_and_axes():
    rows = [
        {"price": 10, "rating": "4.5", "name": "a"},
        {"price": "bad", "rating": 3, "name": "b"},
        {"price": 20, "rating": 4, "name": "c"},
    ]
    chart = generate_chart_data(rows, "scatter")
    assert chart["data"]["datasets"][0]["data"] == [
        {"x": 10.0, "y": 4.5, "label": "a"},
        {"x": 20.0, "y": 4.0, "label": "c"},
    ]
    assert "labels" not in chart["data"]
    assert chart["options"]["scales"]["x"]["title"]["text"] == "price"
    assert chart["options"]["scales"]["y"]["title"]["text"] == "rating"


def test_unknown_chart_type_gives_no_chart():
    assert generate_chart_data([{"a": "x", "b": 1}], "radar") is None
