"""Unit tests for booking-window rules."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.domain.booking import (
    is_within_booking_window,
    normalize_scheduled_time,
    parse_scheduled_date,
    today_local,
    validate_booking_date,
)
from src.domain.errors import BookingWindowError, RideValidationError

TODAY = date(2026, 10, 19)


class TestBookingWindow:
    def test_today_is_allowed(self):
        validate_booking_date(TODAY, TODAY)

    def test_last_day_is_allowed(self):
        validate_booking_date(TODAY + timedelta(days=14), TODAY)

    def test_past_date_rejected(self):
        with pytest.raises(BookingWindowError, match="past dates"):
            validate_booking_date(TODAY - timedelta(days=1), TODAY)

    def test_beyond_window_rejected(self):
        with pytest.raises(BookingWindowError, match="within 14 days"):
            validate_booking_date(TODAY + timedelta(days=15), TODAY)

    def test_custom_window(self):
        assert is_within_booking_window(TODAY + timedelta(days=3), TODAY, max_days=3)
        assert not is_within_booking_window(TODAY + timedelta(days=4), TODAY, max_days=3)


class TestDates:
    def test_iso_date_string(self):
        assert parse_scheduled_date("2026-10-20") == date(2026, 10, 20)

    def test_iso_datetime_keeps_calendar_day(self):
        # late-evening UTC must not roll over to the next day
        assert parse_scheduled_date("2026-10-20T23:30:00Z") == date(2026, 10, 20)

    def test_date_and_datetime_objects(self):
        assert parse_scheduled_date(date(2026, 10, 20)) == date(2026, 10, 20)
        assert parse_scheduled_date(datetime(2026, 10, 20, 8)) == date(2026, 10, 20)

    def test_garbage_rejected(self):
        with pytest.raises(RideValidationError):
            parse_scheduled_date("next tuesday")

    @pytest.mark.parametrize(
        "raw", ["2026-10-20xyz", "2026-10-20 junk", "2026-10-20T25:00"]
    )
    def test_trailing_garbage_rejected(self, raw):
        with pytest.raises(RideValidationError):
            parse_scheduled_date(raw)

    def test_iso_datetime_with_offset(self):
        assert parse_scheduled_date("2026-10-20T08:15:00+05:30") == date(2026, 10, 20)

    def test_today_uses_local_midnight(self):
        # 20:00 UTC on the 19th is already the 20th in Colombo (UTC+5:30)
        now = datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc)
        assert today_local("Asia/Colombo", now) == date(2026, 10, 20)
        assert today_local("UTC", now) == date(2026, 10, 19)


class TestTimes:
    @pytest.mark.parametrize(
        "raw, expected",
        [("09:05", "09:05"), ("9:05", "09:05"), ("23:59", "23:59"), (" 00:00 ", "00:00")],
    )
    def test_valid_times_are_zero_padded(self, raw, expected):
        assert normalize_scheduled_time(raw) == expected

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "12", "noon", "12:5"])
    def test_invalid_times_rejected(self, raw):
        with pytest.raises(RideValidationError, match="HH:MM"):
            normalize_scheduled_time(raw)
