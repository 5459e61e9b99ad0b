"""
Tests for XMLTV / ISO8601 time parsing.
"""
from datetime import datetime, timezone

import pytest

from livetv.utils.timezone import DateFormatError, ensure_utc, parse_iso8601_to_utc, parse_xmltv_time


class TestParseXMLTVTime:

    def test_offset_is_applied(self):
        assert parse_xmltv_time("20080715003000 -0600") == datetime(2008, 7, 15, 6, 30, tzinfo=timezone.utc)
        assert parse_xmltv_time("20240101120000 +0130") == datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)

    def test_seconds_and_offset_are_optional(self):
        assert parse_xmltv_time("202401011200") == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_xmltv_time("20240101120005") == datetime(2024, 1, 1, 12, 0, 5, tzinfo=timezone.utc)

    def test_iso_fallback(self):
        assert parse_xmltv_time("2024-01-01T12:00:00Z") == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "value",
        [None, "", "soon", "20241301120000 +0000", "20240101120000 +1500", "18990101000000", "21500101000000"],
    )
    def test_invalid_values_return_none(self, value):
        assert parse_xmltv_time(value) is None


class TestISO8601:

    def test_naive_is_treated_as_utc(self):
        assert parse_iso8601_to_utc("2024-01-01T00:00:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_invalid_raises(self):
        with pytest.raises(DateFormatError):
            parse_iso8601_to_utc("yesterday")

    def test_ensure_utc(self):
        assert ensure_utc(datetime(2024, 1, 1)).tzinfo is timezone.utc
