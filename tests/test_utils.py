"""Tests for utility functions."""

from datetime import date, datetime, timedelta

import pytest

from ledgerwise.utils import (
    add_months,
    get_period_dates,
    month_end,
    month_key,
    parse_date,
    parse_datetime,
    trailing_window_start,
)


class TestMonthArithmetic:
    """Test calendar month helpers."""

    @pytest.mark.parametrize(
        "start,months,expected",
        [
            (date(2026, 1, 31), 1, date(2026, 2, 28)),
            (date(2024, 1, 31), 1, date(2024, 2, 29)),
            (date(2026, 11, 15), 3, date(2027, 2, 15)),
            (date(2026, 1, 15), -1, date(2025, 12, 15)),
            (date(2026, 3, 31), -13, date(2025, 2, 28)),
        ],
    )
    def test_add_months(self, start: date, months: int, expected: date):
        assert add_months(start, months) == expected

    def test_month_end(self):
        assert month_end(date(2026, 2, 10)) == date(2026, 2, 28)
        assert month_end(date(2026, 12, 1)) == date(2026, 12, 31)

    def test_month_key(self):
        assert month_key(date(2026, 7, 4)) == "2026-07"

    def test_trailing_window_includes_current_month(self):
        today = date(2026, 3, 20)

        assert trailing_window_start(1, today) == date(2026, 3, 1)
        assert trailing_window_start(3, today) == date(2026, 1, 1)
        assert trailing_window_start(6, today) == date(2025, 10, 1)

    def test_trailing_window_minimum_one_month(self):
        assert trailing_window_start(0, date(2026, 3, 20)) == date(2026, 3, 1)


class TestParsing:
    """Test date and timestamp parsing."""

    def test_parse_date_ignores_time(self):
        assert parse_date("2026-05-01T10:30:00") == date(2026, 5, 1)

    def test_parse_datetime_space_separator(self):
        assert parse_datetime("2026-05-01 10:30:00") == datetime(2026, 5, 1, 10, 30)

    def test_parse_date_invalid(self):
        with pytest.raises(ValueError):
            parse_date("05/01/2026")


class TestPeriodDates:
    """Test period date parsing."""

    def test_this_month(self):
        start, end = get_period_dates("this_month")
        today = date.today()
        assert start == today.replace(day=1).isoformat()
        assert end >= today.isoformat()

    def test_last_month(self):
        start, end = get_period_dates("last_month")
        first_of_this = date.today().replace(day=1)
        assert end == (first_of_this - timedelta(days=1)).isoformat()
        assert start.endswith("-01")

    def test_last_30_days(self):
        start, end = get_period_dates("last_30_days")
        assert end == date.today().isoformat()
        assert start == (date.today() - timedelta(days=30)).isoformat()

    def test_ytd(self):
        start, _ = get_period_dates("ytd")
        assert start == f"{date.today().year}-01-01"

    def test_all_time(self):
        assert get_period_dates("all_time") == ("1970-01-01", "2099-12-31")

    def test_yyyy_mm_format(self):
        assert get_period_dates("2026-01") == ("2026-01-01", "2026-01-31")

    def test_february(self):
        assert get_period_dates("2024-02") == ("2024-02-01", "2024-02-29")

    def test_unparseable_falls_back_to_this_month(self):
        assert get_period_dates("someday") == get_period_dates("this_month")
