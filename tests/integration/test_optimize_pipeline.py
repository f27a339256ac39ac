import pytest

from techroute.plan.drive_time import TOKEN_MISSING_MESSAGE, HeuristicDriveTimes
from techroute.plan.models import AssignmentEntry, AssignmentPlan, CapabilityOverride, UnassignedReason
from techroute.plan.optimizer import _sequence_with_pairs, optimize_day


@pytest.fixture
def day(make_job, make_tech):
    jobs = [
        make_job("J1", zone="Zone 1", start="08:00", end="12:00", duration=2),
        make_job("J2", zone="Zone 1", job_type="check", start="13:00", end="15:00"),
        make_job("J3", zone="Zone 2", job_type="service"),
        make_job("J4", zone="Zone 2", job_type="demo", requiresTwoTechs=True, start="10:00", end="12:00"),
        make_job("J5", zone="Zone 3", job_type="pull", duration=3),
        make_job("J6", zone="Zone 1", start="09:00", end="09:30"),
        {"id": "BAD1", "customerName": "", "address": "1 Way", "timeframeStart": "9", "timeframeEnd": "10:00"},
    ]
    staff = [
        make_tech("t1", zone="Zone 1"),
        make_tech("t2", zone="Zone 2", isDemoTech=True),
        make_tech("t3", zone="Zone 3"),
        make_tech("t4", zone="Zone 2", available=False),
    ]
    return jobs, staff


def _run(jobs, staff, cfg, **kw):
    kw.setdefault("provider", HeuristicDriveTimes(cfg))
    return optimize_day(jobs, staff, config=cfg, **kw)


def test_every_valid_job_is_accounted_for_once(day, cfg):
    jobs, staff = day
    result = _run(jobs, staff, cfg)
    assigned = [jid for ids in result.assignment.values() for jid in ids]
    unassigned = [u.job_id for u in result.exceptions.unassigned_jobs]
    assert set(assigned).isdisjoint(unassigned)
    assert set(assigned) | set(unassigned) == {"J1", "J2", "J3", "J4", "J5", "J6"}
    assert len(unassigned) == len(set(unassigned))
    assert result.metadata.counts["jobs_valid"] == 6
    assert result.metadata.counts["jobs_assigned"] + result.metadata.counts["jobs_unassigned"] == 6


def test_two_tech_job_is_on_both_routes(day, cfg):
    jobs, staff = day
    result = _run(jobs, staff, cfg)
    holders = [tid for tid, ids in result.assignment.items() if "J4" in ids]
    assert len(holders) == 2
    starts = {s.start_min for r in result.routes if r.tech_id in holders for s in r.stops if s.job_id == "J4"}
    assert len(starts) == 1


def test_full_day_plan(day, cfg):
    jobs, staff = day
    result = _run(jobs, staff, cfg)
    assert result.assignment == {
        "t1": ["J6", "J1", "J2"],
        "t2": ["J3", "J4"],
        "t3": ["J4", "J5"],
        "t4": [],
    }
    assert result.plan.pinned_starts == {"J4": 600}
    assert result.exceptions.unassigned_jobs == []
    assert all(r.feasible for r in result.routes)


def test_invalid_records_are_reported_not_fatal(day, cfg):
    jobs, staff = day
    result = _run(jobs, staff, cfg)
    (bad,) = result.exceptions.invalid_jobs
    assert bad.id == "BAD1"
    messages = [e.message for e in bad.errors]
    assert "Customer name is required" in messages
    assert 'Invalid start time format: "9" (expected HH:MM)' in messages
    assert result.metadata.counts["jobs_invalid"] == 1


def test_routes_never_break_windows(day, cfg):
    jobs, staff = day
    result = _run(jobs, staff, cfg)
    windows = {j["id"]: (j["timeframeStart"], j["timeframeEnd"]) for j in jobs}
    for route in result.routes:
        for stop in route.stops:
            start, end = windows[stop.job_id]
            assert start <= stop.start_time <= end


def test_same_input_same_output(day, cfg):
    jobs, staff = day
    first = _run(jobs, staff, cfg).model_dump(exclude={"metadata": {"duration_ms"}})
    second = _run(jobs, staff, cfg).model_dump(exclude={"metadata": {"duration_ms"}})
    assert first == second


def test_without_token_result_is_degraded(day, cfg):
    jobs, staff = day
    result = optimize_day(jobs, staff, config=cfg)
    assert result.metadata.degraded
    assert result.metadata.drive_time_source == "heuristic"
    assert result.metadata.warnings[0].message == TOKEN_MISSING_MESSAGE
    assert result.routes


def test_storm_view_limits_jobs_and_staff(make_job, make_tech, cfg):
    jobs = [
        make_job("d1", zone="Zone 1", job_type="demo"),
        make_job("d2", zone="Zone 2", job_type="demo-prep"),
        make_job("i1", zone="Zone 1", job_type="install"),
    ]
    storm = {
        "projectManagers": [{"id": "pm1", "name": "Pat", "zone": "Zone 1", "capabilities": {"install": True}}],
        "subContractors": [{"id": "sc1", "name": "Crew", "zone": "Zone 2", "capabilities": {"install": True}}],
    }
    result = _run(jobs, [make_tech("t1")], cfg, storm_data=storm, storm_filter="subCrewsAndDemos")
    assert result.metadata.storm_filter == "subCrewsAndDemos"
    assert result.metadata.excluded_job_ids == ["i1"]
    assert result.metadata.excluded_staff_ids == ["t1"]
    assert result.assignment == {"pm1": ["d1"], "sc1": ["d2"]}


def test_unknown_storm_filter_raises(day, cfg):
    jobs, staff = day
    with pytest.raises(ValueError):
        _run(jobs, staff, cfg, storm_filter="tornado")


def test_capability_override_flows_to_report(make_job, make_tech, cfg):
    jobs = [make_job("p1", job_type="pull")]
    staff = [make_tech("pm1", type="projectManager")]
    blocked = _run(jobs, staff, cfg)
    assert blocked.exceptions.unassigned_jobs[0].reason == UnassignedReason.NO_CAPABLE_TECHNICIAN
    assert blocked.exceptions.capability_violations[0].tech_id == "pm1"

    approved = [CapabilityOverride(tech_id="pm1", job_id="p1", approved_by="ops")]
    result = _run(jobs, staff, cfg, overrides=approved)
    assert result.assignment == {"pm1": ["p1"]}
    assert result.exceptions.capability_overrides[0].approved_by == "ops"


def test_pair_job_comes_off_both_routes(jobs_of, techs_of, make_job, make_tech, heuristic_times, cfg):
    jobs = jobs_of(
        make_job("jp", requiresTwoTechs=True),
        make_job("jx", start="08:00", end="08:40", duration=2),
    )
    techs = techs_of(make_tech("t1"), make_tech("t2"))
    plan = AssignmentPlan(
        routes={"t1": ["jp", "jx"], "t2": ["jp"]},
        pinned_starts={"jp": 515},
        entries=[
            AssignmentEntry(tech_id="t1", job_id="jp", start_min=515, paired_with="t2"),
            AssignmentEntry(tech_id="t1", job_id="jx", start_min=635),
            AssignmentEntry(tech_id="t2", job_id="jp", start_min=515, paired_with="t1"),
        ],
    )
    routes = _sequence_with_pairs(
        plan, {t.id: t for t in techs}, {j.id: j for j in jobs}, heuristic_times(jobs, techs), cfg
    )
    assert routes["t1"].job_ids == ["jx"]
    assert [e.job_id for e in routes["t1"].exceptions] == ["jp"]
    assert routes["t2"].job_ids == []
    (partner,) = routes["t2"].exceptions
    assert partner.reason == "paired technician could not make the shared start"
