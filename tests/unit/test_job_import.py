import io

from techroute.job_import import ImportColumns, apply_manual_timeframe, jobs_from_import_rows, read_import_csv, row_to_record

CSV = (
    "text,route_title,customer_address,Zone,duration,workers,route_description,customer_phone\n"
    "1001,Smith | 1001 | Install | Zone 2,1 Elm St,,2,1,TF(9a-1p) Cat: A,\t555-0100\n"
    "1002,Jones | 1002 | Demo,2 Oak St,Zone 3,,2,TF(12-4) DT(true),\n"
    "1003,Brown | 1003 | Check,3 Pine St,,1,1,no marker,\n"
    "1004,Green | 1004 | Pull,4 Ash St,,1,1,TF(after lunch),\n"
)


def test_read_import_csv_keeps_strings():
    rows = read_import_csv(io.StringIO(CSV))
    assert len(rows) == 4
    assert rows[0]["text"] == "1001"
    assert rows[1]["duration"] == ""


def test_row_mapping():
    rows = read_import_csv(io.StringIO(CSV))
    cols = ImportColumns()
    first = row_to_record(rows[0], 0, cols)
    assert first["id"] == "1001"
    assert first["customerName"] == "Smith"
    assert first["jobType"] == "Install"
    assert first["zone"] == "Zone 2"
    assert (first["timeframeStart"], first["timeframeEnd"]) == ("09:00", "13:00")
    assert first["phone"] == "555-0100"

    demo = row_to_record(rows[1], 1, cols)
    assert demo["zone"] == "Zone 3"
    assert demo["requiresTwoTechs"] is True
    assert (demo["timeframeStart"], demo["timeframeEnd"]) == ("12:00", "16:00")

    plain = row_to_record(rows[2], 2, cols)
    assert plain["zone"] == "Other"
    assert (plain["timeframeStart"], plain["timeframeEnd"]) == ("08:00", "17:00")


def test_import_holds_back_unreadable_timeframes():
    result = jobs_from_import_rows(read_import_csv(io.StringIO(CSV)))
    assert [r["id"] for r in result.records] == ["1001", "1002", "1003"]
    (held,) = result.needs_manual_timeframe
    assert held["id"] == "1004"
    assert held["originalTimeframe"] == "after lunch"
    assert result.validation.stats.valid == 3
    demo = next(j for j in result.validation.valid_jobs if j.id == "1002")
    assert demo.duration == 1.0
    assert demo.job_type.value == "demo"


def test_custom_default_window_and_columns():
    rows = [{"job": "X1", "route_title": "Acme | X1 | Service | Zone 1", "customer_address": "9 Rd",
             "route_description": ""}]
    result = jobs_from_import_rows(rows, default_window=("07:30", "12:00"), column_map={"job_id": "job"})
    (rec,) = result.records
    assert rec["id"] == "X1"
    assert (rec["timeframeStart"], rec["timeframeEnd"]) == ("07:30", "12:00")


def test_manual_timeframe():
    held = {"id": "1004", "customerName": "Green", "address": "4 Ash St", "originalTimeframe": "after lunch",
            "needsManualTimeframe": True, "timeframeStart": None, "timeframeEnd": None}
    bad = apply_manual_timeframe(held, "15:00", "13:00")
    assert not bad.is_valid
    assert bad.errors[0].message == "Start time (15:00) must be before end time (13:00)"

    fixed = apply_manual_timeframe(held, "1pm", "4pm")
    assert fixed.is_valid
    assert fixed.record["timeframeStart"] == "13:00"
    assert fixed.record["timeframeEnd"] == "16:00"
    assert fixed.record["needsManualTimeframe"] is False
    assert "originalTimeframe" not in fixed.record
