import pytest

from app.services.time_window import (
    TimeWindow,
    format_minutes,
    normalize_time,
    to_minutes,
    windows_overlap,
)


def test_touching_windows_do_not_overlap():
    nine_to_ten = TimeWindow.from_start("09:00", 60)
    ten_to_eleven = TimeWindow.from_start("10:00", 60)
    assert not nine_to_ten.overlaps(ten_to_eleven)
    assert not ten_to_eleven.overlaps(nine_to_ten)


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (("09:00", 60), ("09:30", 60), True),
        (("09:00", 120), ("09:30", 15), True),   # containment
        (("09:30", 15), ("09:00", 120), True),
        (("09:00", 60), ("09:00", 60), True),    # identical
        (("09:00", 30), ("09:30", 30), False),
        (("08:00", 30), ("11:00", 30), False),
    ],
)
def test_overlap_is_half_open(a, b, expected):
    assert TimeWindow.from_start(*a).overlaps(TimeWindow.from_start(*b)) is expected


def test_windows_overlap_is_symmetric():
    assert windows_overlap(0, 10, 5, 15) == windows_overlap(5, 15, 0, 10)
    assert windows_overlap(0, 10, 10, 20) is False


def test_to_minutes_accepts_seconds_suffix():
    assert to_minutes("10:30") == 630
    assert to_minutes("10:30:00") == 630
    assert normalize_time("9:05") == "09:05"


@pytest.mark.parametrize("bad", ["", "10", "24:00", "10:60", "ab:cd"])
def test_to_minutes_rejects_invalid(bad):
    with pytest.raises(ValueError):
        to_minutes(bad)


def test_non_positive_duration_rejected():
    with pytest.raises(ValueError):
        TimeWindow.from_start("10:00", 0)


def test_label_wraps_past_midnight():
    w = TimeWindow.from_start("23:30", 60)
    assert w.end == 24 * 60 + 30
    assert w.label == "23:30-00:30"
    assert format_minutes(1440) == "00:00"
