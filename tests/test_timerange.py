#!/usr/bin/env python3
"""
Tests for the TimeRange value type and date/time parsing.
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from clinic_scheduler.core.errors import ValidationError
from clinic_scheduler.core.timerange import ConflictDetail, TimeRange, parse_date, parse_time

TZ = ZoneInfo("America/Mexico_City")


def slot(hhmm: str, minutes: int) -> TimeRange:
    return TimeRange.from_slot("2025-09-18", hhmm, minutes, TZ)


@pytest.mark.unit
class TestTimeRange:

    def test_overlapping_ranges(self):
        assert slot("09:00", 30).overlaps(slot("09:15", 30))
        assert slot("09:15", 30).overlaps(slot("09:00", 30))

    def test_adjacent_ranges_do_not_overlap(self):
        assert not slot("09:00", 30).overlaps(slot("09:30", 30))
        assert not slot("09:30", 30).overlaps(slot("09:00", 30))

    def test_containing_range_overlaps(self):
        assert slot("09:00", 120).overlaps(slot("10:00", 15))

    def test_end_must_be_after_start(self):
        start = datetime(2025, 9, 18, 9, 0, tzinfo=TZ)
        with pytest.raises(ValidationError):
            TimeRange(start, start)

    def test_naive_bounds_rejected(self):
        with pytest.raises(ValidationError):
            TimeRange(datetime(2025, 9, 18, 9, 0), datetime(2025, 9, 18, 10, 0))

    @pytest.mark.parametrize("duration", [0, -15])
    def test_non_positive_duration_rejected(self, duration):
        with pytest.raises(ValidationError):
            slot("09:00", duration)

    def test_duration_and_contains(self):
        rng = slot("09:00", 45)
        assert rng.duration_minutes == 45
        assert rng.contains(datetime(2025, 9, 18, 9, 0, tzinfo=TZ))
        assert not rng.contains(datetime(2025, 9, 18, 9, 45, tzinfo=TZ))

    def test_to_dict_is_iso(self):
        assert slot("09:00", 30).to_dict() == {
            "start": "2025-09-18T09:00:00-06:00",
            "end": "2025-09-18T09:30:00-06:00",
        }


@pytest.mark.unit
class TestParsing:

    def test_parse_date_accepts_strings_and_dates(self):
        assert parse_date("2025-09-18") == date(2025, 9, 18)
        assert parse_date(date(2025, 9, 18)) == date(2025, 9, 18)
        assert parse_date(datetime(2025, 9, 18, 10, 0)) == date(2025, 9, 18)

    @pytest.mark.parametrize("bad", ["18/09/2025", "2025-13-01", "tomorrow", ""])
    def test_parse_date_rejects_malformed(self, bad):
        with pytest.raises(ValidationError) as exc:
            parse_date(bad)
        assert exc.value.details["field"] == "appointment_date"

    def test_parse_time_formats(self):
        assert parse_time("09:15") == time(9, 15)
        assert parse_time("09:15:00") == time(9, 15)
        assert parse_time(time(9, 15, 30, 500)) == time(9, 15, 30)

    @pytest.mark.parametrize("bad", ["9am", "25:00", "09-15"])
    def test_parse_time_rejects_malformed(self, bad):
        with pytest.raises(ValidationError):
            parse_time(bad)


@pytest.mark.unit
def test_conflict_detail_serialization():
    rng = slot("09:00", 30)
    detail = ConflictDetail(
        reason="overlap",
        message="The selected time overlaps 'Checkup' (09:00-09:30)",
        appointment_id="a-1",
        title="Checkup",
        time_range=rng,
    )
    body = detail.to_dict()
    assert body["reason"] == "overlap"
    assert body["conflicting_appointment_id"] == "a-1"
    assert body["conflicting_title"] == "Checkup"
    assert body["conflicting_time_range"] == rng.to_dict()
