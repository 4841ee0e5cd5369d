"""Tests for query parameter helpers."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from schwabdev.api.params import TimeFormat, clean_params, format_list, time_convert


def test_clean_params_drops_none_and_lowercases_booleans():
    assert clean_params({"symbol": "AAPL", "fields": None, "indicative": False, "count": 0}) == {
        "symbol": "AAPL",
        "indicative": "false",
        "count": 0,
    }


@pytest.mark.parametrize(
    ("value", "expected"),
    [(["AMD", "INTC"], "AMD,INTC"), ("AMD,INTC", "AMD,INTC"), (None, None), ((1, "B", 3), "1,B,3")],
)
def test_format_list(value, expected):
    assert format_list(value) == expected


class TestTimeConvert:
    moment = datetime(2024, 1, 2, 15, 30, 0, 250000, tzinfo=UTC)

    def test_none_passes_through(self):
        assert time_convert(None, TimeFormat.EPOCH_MS) is None

    def test_iso_8601_is_utc_with_milliseconds(self):
        eastern = self.moment.astimezone(timezone(timedelta(hours=-5)))

        assert time_convert(eastern, TimeFormat.ISO_8601) == "2024-01-02T15:30:00.250Z"

    def test_epoch_and_epoch_ms(self):
        assert time_convert(self.moment, TimeFormat.EPOCH) == 1704209400
        assert time_convert(self.moment, TimeFormat.EPOCH_MS) == 1704209400250

    def test_date_only(self):
        assert time_convert(self.moment, TimeFormat.DATE) == "2024-01-02"
        assert time_convert(date(2024, 3, 15), "YYYY-MM-DD") == "2024-03-15"

    def test_epoch_ms_input(self):
        assert time_convert(1704209400250, TimeFormat.ISO_8601) == "2024-01-02T15:30:00.250Z"

    def test_iso_string_input_without_zone_is_utc(self):
        assert time_convert("2024-01-02T15:30:00", TimeFormat.EPOCH_MS) == 1704209400000
        assert time_convert("2024-01-02T15:30:00Z", TimeFormat.DATE) == "2024-01-02"

    def test_unknown_format_is_rejected(self):
        with pytest.raises(ValueError):
            time_convert(self.moment, "rfc2822")
