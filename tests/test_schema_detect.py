import pandas as pd
import pytest

from actimetric.domains.epoch.schema_detect import detect_schema, locate_header_row, select_numeric_metric
from actimetric.domains.errors import SchemaNotFound


def test_time_pim_header():
    s = detect_schema(["Time", "PIM"], "PIM")
    assert s.timestamp_column == "Time"
    assert s.metric_column == "PIM"
    assert s.time_column is None
    assert s.passthrough == ()


def test_first_column_used_when_no_timestamp_name():
    s = detect_schema(["Epoch", "Counts", "PIM"], "pim")
    assert s.timestamp_column == "Epoch"
    assert s.metric_column == "PIM"
    assert s.passthrough == ("Counts",)


def test_metric_is_first_case_insensitive_substring_match():
    s = detect_schema(["timestamp", "pim_x", "PIM"], "PIM")
    assert s.metric_column == "pim_x"


def test_timestamp_is_first_matching_column():
    s = detect_schema(["Line", "Date/Time", "PIM", "Marker"], "PIM")
    assert s.timestamp_column == "Date/Time"
    # name already carries a time part, so no companion column
    assert s.time_column is None
    assert s.passthrough == ("Line", "Marker")


def test_date_column_picks_up_time_of_day_companion():
    s = detect_schema(["Date", "Time", "Activity (PIM)", "Light"], "PIM")
    assert s.timestamp_column == "Date"
    assert s.time_column == "Time"
    assert s.metric_column == "Activity (PIM)"
    assert s.passthrough == ("Light",)


def test_missing_metric_column_fails():
    with pytest.raises(SchemaNotFound):
        detect_schema(["Time", "ZCM"], "PIM")


def test_fewer_than_two_columns_fails():
    with pytest.raises(SchemaNotFound):
        detect_schema(["PIM"], "PIM")


def test_timestamp_column_is_never_the_metric():
    # 'PIM time' is chosen as the timestamp column and must be skipped for the metric
    with pytest.raises(SchemaNotFound):
        detect_schema(["PIM time", "Counts"], "PIM")


def test_explicit_overrides():
    s = detect_schema(["a", "b", "c"], "PIM", timestamp_column="B", metric_column="c")
    assert s.timestamp_column == "b"
    assert s.metric_column == "c"
    with pytest.raises(SchemaNotFound):
        detect_schema(["a", "b"], "PIM", timestamp_column="stamp")
    with pytest.raises(SchemaNotFound):
        detect_schema(["a", "b"], "PIM", timestamp_column="a", metric_column="a")


def test_locate_header_row_skips_preamble():
    lines = [
        "Actiwatch export v3",
        "Subject: 01",
        "",
        "Line;Date;Time;PIM",
        "1;15/01/2024;08:00:00;12",
    ]
    assert locate_header_row(lines, "PIM") == 3
    assert locate_header_row(["Time,PIM", "x,1"], "PIM") == 0
    # nothing resembles a header: parse from the top
    assert locate_header_row(["just text"], "PIM") == 0


def test_locate_header_row_ignores_preamble_mentioning_metric():
    lines = [
        "Device: ActTrust, Mode: PIM",
        "Time,PIM",
        "2024-01-15 08:00:00,4",
    ]
    assert locate_header_row(lines, "PIM") == 1


def test_locate_header_row_without_timestamp_name_matches_data_width():
    lines = [
        "Export notes",
        "Epoch;PIM;Light",
        "1;12;3",
    ]
    assert locate_header_row(lines, "PIM") == 1


def test_metric_column_must_hold_numbers():
    df = pd.DataFrame({
        "Time": ["2024-01-15 08:00:00", "2024-01-15 08:01:00"],
        "PIM_status": ["ok", "ok"],
        "PIM": ["12", "0"],
    })
    schema = detect_schema(list(df.columns), "PIM")
    assert schema.metric_column == "PIM_status"
    picked = select_numeric_metric(schema, df, "PIM")
    assert picked.metric_column == "PIM"
    assert picked.passthrough == ("PIM_status",)

    explicit = detect_schema(list(df.columns), "PIM", metric_column="PIM_status")
    with pytest.raises(SchemaNotFound):
        select_numeric_metric(explicit, df, "PIM", explicit=True)
    with pytest.raises(SchemaNotFound):
        select_numeric_metric(schema, df.drop(columns=["PIM"]), "PIM")
