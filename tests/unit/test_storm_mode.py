import pytest

from techroute.plan.models import Job, Technician
from techroute.plan.storm_mode import (
    StormFilter,
    apply_storm_filter,
    describe_filters,
    parse_storm_filter,
    staff_matches,
)


@pytest.fixture
def storm_jobs():
    def j(job_id, job_type):
        return Job(id=job_id, customer_name="C", address="A", job_type=job_type,
                   timeframe_start="08:00", timeframe_end="17:00")
    return [j("J1", "install"), j("J2", "demo"), j("J3", "check"), j("J4", "pull"), j("J5", "demo-prep")]


@pytest.fixture
def storm_staff():
    return [
        Technician(id="t1", name="Reg", type="regularTech"),
        Technician(id="pm1", name="PM Inst", type="projectManager", capabilities={"install": True}),
        Technician(id="pm2", name="PM Plain", type="projectManager"),
        Technician(id="cs1", name="CS", type="ehqCSStaff", capabilities={"pull": True}),
        Technician(id="sc1", name="Sub", type="subContractor"),
    ]


def test_parse_storm_filter():
    assert parse_storm_filter(None) is None
    assert parse_storm_filter("") is None
    assert parse_storm_filter("installs") == StormFilter.INSTALLS
    assert parse_storm_filter("SUBCREWSANDDEMOS") == StormFilter.SUB_CREWS_AND_DEMOS
    with pytest.raises(ValueError):
        parse_storm_filter("hurricane")


def test_off_and_all_keep_everything(storm_jobs, storm_staff):
    for f in (None, StormFilter.ALL):
        view = apply_storm_filter(storm_jobs, storm_staff, f)
        assert len(view.jobs) == 5 and len(view.staff) == 5
        assert view.excluded_job_ids == [] and view.excluded_staff_ids == []


def test_sub_crews_and_demos(storm_jobs, storm_staff):
    view = apply_storm_filter(storm_jobs, storm_staff, StormFilter.SUB_CREWS_AND_DEMOS)
    assert [j.id for j in view.jobs] == ["J2", "J5"]
    assert [t.id for t in view.staff] == ["pm1", "sc1"]
    assert view.excluded_staff_ids == ["t1", "pm2", "cs1"]


def test_check_services_and_pulls(storm_jobs, storm_staff):
    checks = apply_storm_filter(storm_jobs, storm_staff, StormFilter.CHECK_SERVICES)
    assert [j.id for j in checks.jobs] == ["J3"]
    assert [t.id for t in checks.staff] == ["t1", "cs1"]

    pulls = apply_storm_filter(storm_jobs, storm_staff, StormFilter.PULLS)
    assert [j.id for j in pulls.jobs] == ["J4"]
    assert [t.id for t in pulls.staff] == ["t1", "cs1"]


def test_regular_only_keeps_all_jobs(storm_jobs, storm_staff):
    view = apply_storm_filter(storm_jobs, storm_staff, StormFilter.REGULAR_ONLY)
    assert len(view.jobs) == 5
    assert [t.id for t in view.staff] == ["t1"]


def test_filter_is_a_pure_view(storm_jobs, storm_staff):
    before = [j.id for j in storm_jobs]
    apply_storm_filter(storm_jobs, storm_staff, StormFilter.INSTALLS)
    assert [j.id for j in storm_jobs] == before
    assert staff_matches(storm_staff[1], StormFilter.INSTALLS)
    assert not staff_matches(storm_staff[2], StormFilter.INSTALLS)


def test_describe_filters():
    described = describe_filters()
    assert len(described) == 6
    assert described[0] == {"value": "all", "label": "All Jobs & Staff"}


def test_installs_keeps_only_leaders_granted_install(storm_jobs):
    staff = [
        Technician(id="pm1", name="PM Inst", type="projectManager", capabilities={"install": True}),
        Technician(id="lead1", name="Leader", type="ehqLeader", capabilities={"install": False}),
    ]
    view = apply_storm_filter(storm_jobs, staff, StormFilter.INSTALLS)
    assert [j.id for j in view.jobs] == ["J1"]
    assert [t.id for t in view.staff] == ["pm1"]
    assert view.excluded_staff_ids == ["lead1"]
