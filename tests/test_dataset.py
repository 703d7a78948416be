import pandas as pd

from sheet_analyst.lib.dataset import (
    Dataset,
    categorical_columns,
    date_columns,
    format_number,
    identifier_column,
    numeric_columns,
    row_identifier,
    sheet_headers,
    to_number,
    to_timestamp,
)


def test_to_number_is_permissive_but_never_zero_fills() -> None:
    assert to_number("1,234.5") == 1234.5
    assert to_number("$12") == 12.0
    assert to_number("-$5") == -5.0
    assert to_number("15%") == 15.0
    assert to_number(" 42 ") == 42.0
    assert to_number("1e3") == 1000.0
    assert to_number(7) == 7.0
    assert to_number("abc") is None
    assert to_number("") is None
    assert to_number(None) is None
    assert to_number(True) is None
    assert to_number(float("nan")) is None
    assert to_number(float("inf")) is None
    assert to_number("12abc") is None
    assert to_number("10 kg") is None
    assert to_number("100 units") is None


def test_to_timestamp_skips_plain_numbers_and_words() -> None:
    assert to_timestamp("2024-01-15") == pd.Timestamp("2024-01-15")
    assert to_timestamp("42") is None
    assert to_timestamp("n/a") is None
    assert to_timestamp(None) is None


def test_format_number() -> None:
    assert format_number(1500.0) == "1,500"
    assert format_number(2.5) == "2.5"
    assert format_number(1 / 3) == "0.333"


def test_sheet_headers_keep_first_seen_order() -> None:
    rows = [{"Name": "A", "Score": 1}, {"Score": 2, "Extra": "x"}]
    assert sheet_headers(rows) == ["Name", "Score", "Extra"]


def test_column_typing_helpers() -> None:
    rows = [
        {"Name": "A", "Region": "North", "Date": "2024-01-01", "Sales": "100"},
        {"Name": "B", "Region": "South", "Date": "2024-02-01", "Sales": "n/a"},
        {"Name": "C", "Region": "North", "Date": "2024-03-01", "Sales": 300},
        {"Name": "D", "Region": "North", "Date": "2024-04-01", "Sales": 50},
        {"Name": "E", "Region": "South", "Date": "2024-05-01", "Sales": 20},
    ]
    assert numeric_columns(rows) == ["Sales"]
    assert date_columns(rows) == ["Date"]
    assert categorical_columns(rows) == ["Region"]


def test_date_column_needs_most_values_to_parse() -> None:
    rows = [{"When": "2024-01-01"}, {"When": "2024-02-01"}, {"When": "soon"}]
    assert date_columns(rows) == []


def test_row_identifier_prefers_identifier_like_columns() -> None:
    headers = ["Score", "Product Name", "Category"]
    row = {"Score": 5, "Product Name": "Widget", "Category": "Tools"}
    assert identifier_column(row, headers) == "Product Name"
    assert row_identifier(row, headers) == "Widget"


def test_row_identifier_falls_back_to_text_then_placeholder() -> None:
    assert row_identifier({"Score": 5, "Colour": "red"}, ["Score", "Colour"]) == "red"
    assert row_identifier({"Score": 5}, ["Score"]) == "Item"
    assert row_identifier({"Score": 5}, ["Score"], position=3) == "Item 3"


def test_dataset_from_dict_accepts_wire_shape() -> None:
    ds = Dataset.from_dict(
        {"fileName": "stats.xlsx", "sheets": {"Pokemon": [{"Name": "A", "Attack": 10}], "Empty": []}}
    )
    assert ds.file_name == "stats.xlsx"
    assert ds.total_rows == 1
    assert [name for name, _ in ds.iter_sheets()] == ["Pokemon", "Empty"]
    assert ds.to_dict()["sheets"]["Pokemon"] == [{"Name": "A", "Attack": 10}]
    assert ds.uploaded_at


def test_dataset_from_frames_turns_missing_cells_into_none() -> None:
    df = pd.DataFrame({"Name": ["A", "B"], "Score": [1.5, float("nan")]})
    ds = Dataset.from_frames("scores.csv", {"Scores": df})
    rows = ds.sheets["Scores"]
    assert rows[0] == {"Name": "A", "Score": 1.5}
    assert rows[1]["Name"] == "B"
    assert rows[1]["Score"] is None
