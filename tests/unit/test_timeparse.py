import pytest

from techroute.timeparse import (
    convert_ampm_to_24h,
    extract_timeframe,
    is_start_before_end,
    minutes_to_hhmm,
    normalize_time,
    parse_timeframe,
    to_minutes,
)


def test_normalize_time_pads_and_rejects_out_of_range():
    assert normalize_time("9:05") == "09:05"
    assert normalize_time("17:00") == "17:00"
    assert normalize_time("2pm") == "14:00"
    assert normalize_time("25:00") is None
    assert normalize_time("10:75") is None
    assert normalize_time("") is None
    assert normalize_time(None) is None


def test_normalize_time_reads_export_clock_text():
    assert normalize_time("14:30:00") == "14:30"
    assert normalize_time("2:30:00 PM") == "14:30"
    assert normalize_time("2025-03-01T09:15:00") == "09:15"
    assert normalize_time("2025-03-01 16:45") == "16:45"
    assert normalize_time("25:00:00") is None
    # bare numbers are never read as dates
    assert normalize_time("9") is None


def test_ampm_conversion_edges():
    assert convert_ampm_to_24h("12p") == "12:00"
    assert convert_ampm_to_24h("12a") == "00:00"
    assert convert_ampm_to_24h("6:30pm") == "18:30"
    assert convert_ampm_to_24h("13pm") is None
    assert convert_ampm_to_24h("09:00") is None


def test_minutes_round_trip_and_ordering():
    assert to_minutes("08:15") == 495
    assert minutes_to_hhmm(515) == "08:35"
    assert is_start_before_end("09:00", "10:00")
    assert not is_start_before_end("10:00", "10:00")
    assert not is_start_before_end("bad", "10:00")
    with pytest.raises(ValueError):
        to_minutes("noon")


def test_parse_timeframe_infers_afternoon():
    assert parse_timeframe("09:00-13:00") == ("09:00", "13:00")
    assert parse_timeframe("12p-6p") == ("12:00", "18:00")
    assert parse_timeframe("12-6 PM") == ("12:00", "18:00")
    assert parse_timeframe("8-5") == ("08:00", "17:00")
    assert parse_timeframe("1-4") == ("13:00", "16:00")
    assert parse_timeframe("sometime") == (None, None)


def test_extract_timeframe_markers():
    assert extract_timeframe("Notes TF(9a-1p) DT(true)") == ("09:00", "13:00", "9a-1p")
    assert extract_timeframe("TF: 12-4 Cat: A")[:2] == ("12:00", "16:00")
    assert extract_timeframe("no marker here") == (None, None, "")
    start, end, original = extract_timeframe("TF(after lunch)")
    assert (start, end) == (None, None)
    assert original == "after lunch"
