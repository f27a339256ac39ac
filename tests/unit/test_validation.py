from techroute.plan.models import ErrorKind, StaffType
from techroute.plan.validation import (
    check_job_safety,
    format_validation_errors,
    roster_from_storm_data,
    sanitize_job,
    validate_job,
    validate_jobs,
    validate_staff,
)


def _messages(result):
    return [e.message for e in result.errors]


def test_valid_job_is_normalized(make_job):
    res = validate_job(make_job("J1", start="9:00", end="1pm", duration="2.5", jobType="demo_prep"))
    assert res.is_valid
    job = res.job
    assert job.timeframe_start == "09:00"
    assert job.timeframe_end == "13:00"
    assert job.duration == 2.5
    assert job.job_type.value == "demo-prep"


def test_blank_duration_defaults_to_one_hour(make_job):
    assert sanitize_job(make_job("J1", duration=""))["duration"] == 1.0
    assert validate_job(make_job("J1", duration=None)).job.duration == 1.0


def test_every_problem_is_reported():
    res = validate_job({"zone": 3, "timeframeStart": "25:00", "duration": "abc"})
    msgs = _messages(res)
    assert not res.is_valid
    assert "Job ID is required" in msgs
    assert "Customer name is required" in msgs
    assert "Address is required" in msgs
    assert 'Invalid start time format: "25:00" (expected HH:MM)' in msgs
    assert "End time is required" in msgs
    assert 'Invalid duration: "abc" (must be a number)' in msgs
    assert any(m.startswith("Invalid zone type") for m in msgs)


def test_window_order_is_a_time_window_conflict(make_job):
    res = validate_job(make_job("J1", start="14:00", end="09:00"))
    assert not res.is_valid
    (err,) = res.errors
    assert err.kind == ErrorKind.TIME_WINDOW_CONFLICT
    assert err.message == "Start time (14:00) must be before end time (09:00)"


def test_duration_bounds(make_job):
    assert _messages(validate_job(make_job("J1", duration=0))) == ["Duration must be positive (got 0)"]
    assert _messages(validate_job(make_job("J1", duration=30))) == ["Duration seems unrealistic: 30 hours"]


def test_safety_flags_injection_and_length(make_job):
    rec = make_job("J1", customerName="Bob'; DROP TABLE jobs; --", description="<script>alert(1)</script>")
    report = check_job_safety(rec)
    assert not report.is_safe
    assert "Potential SQL injection in customer_name" in report.warnings
    assert "Potential script injection in description" in report.warnings

    long_rec = make_job("J2", address="x" * 501)
    assert check_job_safety(long_rec).warnings == ["Address is unusually long"]


def test_batch_rejects_duplicates_and_counts(make_job):
    batch = validate_jobs([
        make_job("J1"),
        make_job("J1"),
        {"customerName": "No id"},
        make_job("J2", customerName="<script>x</script>"),
    ])
    assert [j.id for j in batch.valid_jobs] == ["J1", "J2"]
    ids = [r.id for r in batch.invalid_jobs]
    assert ids == ["J1", "row_3"]
    assert batch.invalid_jobs[0].errors[-1].message == "Duplicate job ID: J1"
    assert batch.stats.total == 4
    assert batch.stats.success_rate == 50.0
    # safety warnings never block a job on their own
    assert [w.id for w in batch.warnings] == ["J2"]


def test_format_validation_errors_truncates():
    batch = validate_jobs([{"id": f"J{i}"} for i in range(7)])
    text = format_validation_errors(batch.invalid_jobs, limit=5)
    assert text.startswith("Found 7 invalid job(s):")
    assert "... and 2 more errors" in text
    assert format_validation_errors([]) == ""


def test_validate_staff(make_tech):
    res = validate_staff([
        make_tech("t1"),
        make_tech("t1"),
        {"id": "t2", "name": "Sam", "type": "wizard"},
        {"id": "t3", "name": "Lee", "type": ""},
        {"name": "Nobody"},
    ])
    assert [t.id for t in res.valid_staff] == ["t1", "t3"]
    assert res.valid_staff[1].type == StaffType.REGULAR_TECH
    errors = {r.id: [e.message for e in r.errors] for r in res.invalid_staff}
    assert errors["t1"] == ["Duplicate technician ID: t1"]
    assert errors["t2"][0].startswith("Unknown staff type 'wizard'")
    assert errors["row_5"] == ["Technician ID is required"]


def test_storm_roster_types_come_from_the_category(make_tech):
    storm = {
        "projectManagers": [{"id": "pm1", "name": "Pat", "office": "Zone 2"}],
        "subContractors": [{"id": "sc1", "name": "Crew", "type": "projectManager", "zone": "Zone 1"}],
    }
    roster = roster_from_storm_data(storm, [make_tech("t1")])
    by_id = {r["id"]: r for r in roster}
    assert by_id["t1"]["type"] == "regularTech"
    assert by_id["pm1"]["type"] == "projectManager"
    assert by_id["pm1"]["zone"] == "Zone 2"
    assert by_id["sc1"]["type"] == "subContractor"
