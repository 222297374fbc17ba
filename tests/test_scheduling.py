from datetime import datetime, timezone

import pytest

from clinicdesk.errors import ValidationError
from clinicdesk.scheduling import duration_minutes, normalise_status, normalise_type, require_datetime


def test_require_datetime_accepts_z_suffix():
    parsed = require_datetime("2025-01-15T10:00:00Z", "startTime")
    assert parsed == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "next tuesday"])
def test_require_datetime_rejects(value):
    with pytest.raises(ValidationError) as info:
        require_datetime(value, "startTime")
    assert info.value.details == {"field": "startTime"}


def test_duration_handles_naive_and_aware():
    start = datetime(2025, 1, 15, 10, 0)
    end = datetime(2025, 1, 15, 10, 50, 59, tzinfo=timezone.utc)
    assert duration_minutes(start, end) == 50

    with pytest.raises(ValidationError):
        duration_minutes(end, start)
    with pytest.raises(ValidationError):
        duration_minutes(start, start)


@pytest.mark.parametrize(
    "raw,expected",
    [(None, "SCHEDULED"), ("Confirmed", "CONFIRMED"), ("canceled", "CANCELLED"), ("no show", "NO_SHOW")],
)
def test_normalise_status(raw, expected):
    assert normalise_status(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [(None, "CONSULTATION"), ("Follow up", "FOLLOW_UP"), ("return", "FOLLOW_UP"), ("EXAM", "EXAM")],
)
def test_normalise_type(raw, expected):
    assert normalise_type(raw) == expected


def test_unknown_values_are_rejected():
    with pytest.raises(ValidationError):
        normalise_status("postponed")
    with pytest.raises(ValidationError):
        normalise_type("surgery")
