from datetime import date, datetime

from embywrapped.timerange import (
    TimeRange,
    available_time_ranges,
    current_year_range,
    format_label,
    lookback_days,
    parse_time_range,
    to_canonical_string,
)


def test_parse_year():
    time_range = parse_time_range("2025")
    assert time_range == TimeRange(year=2025)
    assert not time_range.is_month
    assert to_canonical_string(time_range) == "2025"


def test_parse_month_pads_canonical_form():
    time_range = parse_time_range("2026-1")
    assert time_range.is_month
    assert time_range.year == 2026
    assert time_range.month == 1
    assert to_canonical_string(time_range) == "2026-01"


def test_canonical_round_trip():
    for value in ["2024", "2025", "2026-01", "2026-12", "1999-07"]:
        assert to_canonical_string(parse_time_range(value)) == value


def test_malformed_parts_match_nothing():
    bad_year = parse_time_range("abc")
    assert bad_year.year is None
    assert to_canonical_string(bad_year) == "NaN"
    assert not bad_year.matches("2025-03-01")
    assert format_label(bad_year) == "Unknown period"

    bad_month = parse_time_range("2026-13")
    assert bad_month.month is None
    assert to_canonical_string(bad_month) == "2026-NaN"
    assert not bad_month.matches("2026-01-05")

    assert parse_time_range("2026-x").month is None
    assert parse_time_range("").year is None


def test_year_matches():
    time_range = TimeRange(year=2025)
    assert time_range.matches("2025-03-01")
    assert time_range.matches("2025-12-31")
    assert not time_range.matches("2024-12-31")
    assert not time_range.matches("not a date")
    assert time_range.matches(date(2025, 1, 1))


def test_month_matches():
    time_range = parse_time_range("2026-01")
    assert time_range.matches("2026-01-15")
    assert not time_range.matches("2026-02-01")
    assert not time_range.matches("2025-01-15")


def test_labels():
    assert format_label(parse_time_range("2025")) == "2025 (Full Year)"
    assert format_label(parse_time_range("2026-01")) == "January 2026"
    assert format_label(parse_time_range("2026-12")) == "December 2026"


def test_lookback_days_has_a_floor():
    now = datetime(2025, 6, 1)
    assert lookback_days(TimeRange(year=2025), now=now) == 365
    assert lookback_days(TimeRange(year=2030), now=now) == 365
    assert lookback_days(TimeRange(year=None), now=now) == 365


def test_lookback_days_covers_older_years():
    now = datetime(2025, 6, 1)
    # 882 days since 2023-01-01 plus the two-week buffer
    assert lookback_days(TimeRange(year=2023), now=now) == 896


def test_current_year_range():
    assert current_year_range(datetime(2026, 3, 15)) == TimeRange(year=2026)


def test_available_time_ranges():
    options = available_time_ranges(now=datetime(2026, 3, 15))
    assert [option.value for option in options] == ["2026", "2025", "2026-03", "2026-02", "2026-01"]
    assert options[0].label == "2026 (Full Year)"
    assert options[2].label == "March 2026"


def test_years_outside_calendar_are_malformed():
    now = datetime(2026, 10, 19)
    for value in ["0", "10000", "0-05", "99999-01"]:
        time_range = parse_time_range(value)
        assert time_range.year is None
        assert not time_range.is_valid
        assert not time_range.matches("2026-05-01")
        assert lookback_days(time_range, now=now) == 365
    assert to_canonical_string(parse_time_range("0-05")) == "NaN-05"


def test_lookback_days_ignores_hand_built_bad_years():
    assert lookback_days(TimeRange(year=0), now=datetime(2026, 10, 19)) == 365
