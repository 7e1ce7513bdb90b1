# tests/test_escalation.py
"""
Tests for the SLA escalation sweep.

Run:
    pytest tests/test_escalation.py -v
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import NOW, active_assignments, minutes_before
from fixit.models.models import Assignment
from fixit.services import escalation as escalation_module
from fixit.services.errors import AssignmentConflict, DependencyFailure
from fixit.services.escalation import EscalationEngine


@pytest.fixture
def engine_for(db, policy):
    def _make(notifier):
        return EscalationEngine(db, notifier, policy)
    return _make


# ============================================================
# TEST: UNACCEPTED ASSIGNMENTS (PASS 2)
# ============================================================

def test_scenario_c_critical_pending_is_reassigned(db, notifier, engine_for, make_report, make_technician, make_assignment):
    t0 = NOW
    first = make_technician("Amy")
    second = make_technician("Bob")
    report = make_report(priority="critical", created_at=t0)
    stale = make_assignment(report, first, status="pending", created_at=t0)

    result = engine_for(notifier).run(t0 + timedelta(minutes=16))

    db.refresh(stale)
    assert stale.status == "cancelled"
    assert stale.notes == "Auto-cancelled: not accepted within 10m"
    active = active_assignments(db, report)
    assert len(active) == 1
    assert active[0].technician_id == second.id
    assert active[0].assigned_by == "escalation_engine"
    assert [m[1] for m in notifier.of("manager")] == ["SLA escalation: assignment not accepted"]
    assert notifier.of("technician")[0][1:4] == (second.email, report.id, "reassignment")
    assert any("Reassigned" in a for a in result.actions)


def test_second_run_does_not_reassign_again(db, notifier, engine_for, make_report, make_technician, make_assignment):
    amy = make_technician("Amy")
    make_technician("Bob")
    report = make_report(priority="critical")
    make_assignment(report, amy, created_at=NOW)
    later = NOW + timedelta(minutes=16)
    engine = engine_for(notifier)

    engine.run(later)
    count_after_first = db.query(Assignment).count()
    second = engine.run(later)

    assert db.query(Assignment).count() == count_after_first == 2
    assert second.actions == []
    assert len(active_assignments(db, report)) == 1


def test_non_critical_uses_thirty_minute_threshold(db, notifier, engine_for, make_report, make_technician, make_assignment):
    tech = make_technician("Amy")
    make_technician("Bob")
    report = make_report(priority="high")
    job = make_assignment(report, tech, created_at=minutes_before(29))

    engine_for(notifier).run(NOW)
    db.refresh(job)
    assert job.status == "pending"

    engine_for(notifier).run(NOW + timedelta(minutes=1))
    db.refresh(job)
    assert job.status == "cancelled"


def test_no_replacement_still_cancels_and_alerts(db, notifier, engine_for, make_report, make_technician, make_assignment):
    only = make_technician("Amy")
    report = make_report(priority="critical")
    job = make_assignment(report, only, created_at=minutes_before(11))

    result = engine_for(notifier).run(NOW)

    db.refresh(job)
    assert job.status == "cancelled"
    assert active_assignments(db, report) == []
    assert any("no replacement technician available" in a for a in result.actions)
    assert len(notifier.of("manager")) == 1


def test_cancelled_technician_is_not_handed_the_report_back(db, notifier, engine_for, make_report, make_technician, make_assignment):
    amy = make_technician("Amy")
    report = make_report(priority="critical", created_at=minutes_before(20))
    make_assignment(report, amy, created_at=minutes_before(11))
    engine = engine_for(notifier)

    engine.run(NOW)
    second = engine.run(NOW)

    assert second.actions == []
    assert active_assignments(db, report) == []
    assert len(notifier.of("manager")) == 1

    after_cooldown = engine.run(NOW + timedelta(minutes=10))
    assert active_assignments(db, report) == []
    assert any(a.startswith("No available technician") for a in after_cooldown.actions)

    bob = make_technician("Bob")
    engine.run(NOW + timedelta(minutes=11))
    assert [a.technician_id for a in active_assignments(db, report)] == [bob.id]
    assert [a.status for a in db.query(Assignment).filter(Assignment.technician_id == amy.id)] == ["cancelled"]


# ============================================================
# TEST: UNASSIGNED REPORTS (PASS 1)
# ============================================================

def test_overdue_unassigned_report_goes_to_least_loaded(db, notifier, engine_for, make_report, make_technician, make_assignment):
    busy = make_technician("Amy")
    idle = make_technician("Bob")
    make_assignment(make_report(building="Smith Hall"), busy, created_at=NOW)
    report = make_report(priority="high", created_at=minutes_before(31))

    result = engine_for(notifier).run(NOW)

    active = active_assignments(db, report)
    assert [a.technician_id for a in active] == [idle.id]
    assert active[0].assigned_by == "escalation_engine"
    db.refresh(report)
    assert report.status == "dispatched"
    assert "SLA escalation: unassigned report" in [m[1] for m in notifier.of("manager")]
    assert any("unassigned for 31m" in a for a in result.actions)


def test_second_run_leaves_escalated_report_alone(db, notifier, engine_for, make_report, make_technician):
    make_technician("Amy")
    report = make_report(priority="high", created_at=minutes_before(31))
    engine = engine_for(notifier)

    engine.run(NOW)
    second = engine.run(NOW)

    assert db.query(Assignment).filter(Assignment.report_id == report.id).count() == 1
    assert second.actions == []
    assert len(notifier.of("manager")) == 1


def test_unassigned_thresholds_by_priority(db, notifier, engine_for, make_report, make_technician):
    make_technician("Amy")
    critical = make_report(priority="critical", created_at=minutes_before(15), room="1")
    medium = make_report(priority="medium", created_at=minutes_before(59), room="2", building="Smith Hall")

    engine_for(notifier).run(NOW)

    assert len(active_assignments(db, critical)) == 1
    assert active_assignments(db, medium) == []


def test_duplicates_are_never_escalated(db, notifier, engine_for, make_report, make_technician):
    make_technician("Amy")
    original = make_report(priority="low", created_at=NOW)
    duplicate = make_report(priority="critical", status="submitted", created_at=minutes_before(120),
                            upvote_count=0, duplicate_of=original.id, room="9")

    engine_for(notifier).run(NOW)
    assert active_assignments(db, duplicate) == []


def test_unassigned_without_technicians_alerts_manager(db, notifier, engine_for, make_report):
    make_report(priority="critical", created_at=minutes_before(20))
    result = engine_for(notifier).run(NOW)
    assert any(a.startswith("No available technician") for a in result.actions)
    assert len(notifier.of("manager")) == 1


# ============================================================
# TEST: STALE IN-PROGRESS JOBS (PASS 3)
# ============================================================

def test_stale_jobs_batched_into_one_alert(db, notifier, engine_for, make_report, make_technician, make_assignment):
    tech = make_technician("Amy")
    for room, started in (("1", 300), ("2", 241), ("3", 60)):
        report = make_report(status="in_progress", room=room, created_at=minutes_before(started + 10))
        make_assignment(report, tech, status="in_progress", created_at=minutes_before(started + 5),
                        started_at=minutes_before(started))

    result = engine_for(notifier).run(NOW)

    alerts = notifier.of("manager")
    assert len(alerts) == 1
    assert alerts[0][1] == "Stale in-progress jobs"
    assert alerts[0][2][0] == "2 job(s) in progress for over 4 hours without completion"
    assert "Flagged 2 stale in-progress jobs to manager" in result.actions


def test_stale_check_falls_back_to_created_at(db, notifier, engine_for, make_report, make_technician, make_assignment):
    tech = make_technician("Amy")
    report = make_report(status="in_progress", created_at=minutes_before(260))
    make_assignment(report, tech, status="in_progress", created_at=minutes_before(250), started_at=None)

    result = engine_for(notifier).run(NOW)

    alerts = notifier.of("manager")
    assert [a[1] for a in alerts] == ["Stale in-progress jobs"]
    assert "(250m elapsed)" in alerts[0][2][3]
    assert "Flagged 1 stale in-progress jobs to manager" in result.actions


# ============================================================
# TEST: FAILURE TOLERANCE
# ============================================================

def test_notification_failures_do_not_stop_sweep(db, failing_notifier, engine_for, make_report, make_technician, make_assignment):
    amy = make_technician("Amy")
    make_technician("Bob")
    report = make_report(priority="critical")
    make_assignment(report, amy, created_at=minutes_before(30))

    engine_for(failing_notifier).run(NOW)

    assert [a.technician.name for a in active_assignments(db, report)] == ["Bob"]


def test_item_failure_recorded_and_sweep_continues(db, notifier, engine_for, make_report, make_technician, monkeypatch):
    make_technician("Amy")
    broken = make_report(priority="critical", created_at=minutes_before(40), room="1")
    healthy = make_report(priority="critical", created_at=minutes_before(30), building="Smith Hall", room="2")
    real_create = escalation_module.create_assignment

    def flaky_create(db_, report, *args, **kwargs):
        if report.id == broken.id:
            raise AssignmentConflict("concurrent writer")
        return real_create(db_, report, *args, **kwargs)

    monkeypatch.setattr(escalation_module, "create_assignment", flaky_create)

    result = engine_for(notifier).run(NOW)

    assert any(a.startswith("Failed to process report") for a in result.actions)
    assert active_assignments(db, broken) == []
    assert len(active_assignments(db, healthy)) == 1


def test_unreachable_store_aborts_sweep(db, notifier, engine_for, monkeypatch):
    engine = engine_for(notifier)

    def down(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(engine, "escalate_unassigned", down)
    with pytest.raises(DependencyFailure):
        engine.run(NOW)
