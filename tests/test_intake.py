# tests/test_intake.py
"""
Tests for report intake, urgency and deduplication.

Run:
    pytest tests/test_intake.py -v
"""

from datetime import timedelta

import pytest

from conftest import NOW
from fixit.models.models import Assignment, Report
from fixit.schemas.dispatch import ReportDraft
from fixit.services.errors import ValidationFailed
from fixit.services.intake import IntakeService, compute_urgency_score, find_duplicate, resolve_building


def _draft(building="Gore Hall", trade="hvac", priority="high", safety=False, **extra):
    payload = {
        "building": building,
        "room": "204",
        "floor": "2",
        "description": "Room is freezing",
        "reporter_email": "student@udel.edu",
        "ai_analysis": {
            "trade": trade,
            "priority": priority,
            "description": "Heating failure",
            "suggested_action": "Check the radiator valve",
            "safety_concern": safety,
        },
    }
    payload.update(extra)
    return ReportDraft(**payload)


@pytest.fixture
def service(db, notifier, weights, policy):
    return IntakeService(db, notifier, weights, policy)


# ============================================================
# TEST: URGENCY
# ============================================================

def test_urgency_formula(policy):
    assert compute_urgency_score("critical", 1, False, policy) == 11.5
    assert compute_urgency_score("high", 2, True, policy) == 13.0
    assert compute_urgency_score("medium", 0, False, policy) == 4
    assert compute_urgency_score("low", 4, False, policy) == 7.0


# ============================================================
# TEST: NEW REPORTS
# ============================================================

def test_new_report_is_dispatched_and_assigned(db, service, notifier, make_technician):
    tech = make_technician("T1", buildings=["Gore Hall"])

    result = service.intake(_draft(), now=NOW)

    report = result.report
    assert result.duplicated is False
    assert report.status == "dispatched"
    assert report.upvote_count == 1
    assert report.urgency_score == 8.5
    assert report.email_sent is True
    assert report.dispatched_at == NOW
    assert result.assignment is not None
    assert result.assignment.technician_id == tech.id
    assert notifier.of("department") == [("department", "hvac", report.id)]


def test_new_report_without_technicians_stays_dispatched(db, service):
    result = service.intake(_draft(), now=NOW)

    assert result.assignment is None
    assert result.report.status == "dispatched"
    assert db.query(Assignment).count() == 0


def test_department_failure_leaves_email_unsent(db, failing_notifier, weights, policy):
    result = IntakeService(db, failing_notifier, weights, policy).intake(_draft(), now=NOW)

    assert result.report.email_sent is False
    assert result.report.dispatched_at is None
    assert db.query(Report).count() == 1


def test_coordinates_filled_from_campus_directory(service):
    report = service.intake(_draft(), now=NOW).report
    assert report.latitude == pytest.approx(39.6812)
    assert report.longitude == pytest.approx(-75.7528)


# ============================================================
# TEST: BUILDING RESOLUTION
# ============================================================

def test_unknown_building_rejected():
    with pytest.raises(ValidationFailed):
        resolve_building(_draft(building="Hogwarts"))


def test_building_from_nearby_coordinates():
    assert resolve_building(_draft(building="", latitude=39.6811, longitude=-75.7527)) == "Gore Hall"


def test_far_coordinates_rejected():
    with pytest.raises(ValidationFailed):
        resolve_building(_draft(building=None, latitude=40.0, longitude=-75.0))


# ============================================================
# TEST: DEDUPLICATION
# ============================================================

def test_second_submission_upvotes_original(db, service, policy):
    first = service.intake(_draft(), now=NOW).report
    second = service.intake(_draft(), now=NOW + timedelta(hours=2))

    db.refresh(first)
    assert second.duplicated is True
    assert second.original_id == first.id
    assert second.report.duplicate_of == first.id
    assert second.report.upvote_count == 0
    assert second.report.status == "submitted"
    assert first.upvote_count == 2
    assert first.urgency_score == compute_urgency_score("high", 2, False, policy) == 10.0
    assert db.query(Report).filter(Report.duplicate_of.is_(None)).count() == 1


def test_duplicate_urgency_uses_original_priority(db, service):
    original = service.intake(_draft(priority="critical", safety=True), now=NOW).report
    service.intake(_draft(priority="low", safety=False), now=NOW + timedelta(minutes=5))

    db.refresh(original)
    # critical 10 + 2 upvotes * 1.5 + safety 3
    assert original.urgency_score == 16.0


def test_duplicate_not_assigned_or_dispatched(db, service, notifier, make_technician):
    make_technician("T1")
    service.intake(_draft(), now=NOW)
    notifier.sent.clear()

    result = service.intake(_draft(), now=NOW + timedelta(minutes=1))

    assert result.assignment is None
    assert notifier.sent == []
    assert db.query(Assignment).count() == 1


def test_dedup_window_boundary(db, policy, make_report):
    inside = make_report(created_at=NOW - timedelta(days=7))
    assert find_duplicate(db, "Gore Hall", "hvac", NOW, policy).id == inside.id
    assert find_duplicate(db, "Gore Hall", "hvac", NOW + timedelta(seconds=1), policy) is None


def test_different_trade_or_building_not_merged(db, service):
    service.intake(_draft(), now=NOW)
    other_trade = service.intake(_draft(trade="plumbing"), now=NOW)
    other_building = service.intake(_draft(building="Smith Hall"), now=NOW)
    assert other_trade.duplicated is False
    assert other_building.duplicated is False


def test_resolved_original_not_merged(db, service):
    first = service.intake(_draft(), now=NOW).report
    first.status = "resolved"
    db.commit()

    third = service.intake(_draft(), now=NOW + timedelta(days=1))

    assert third.duplicated is False
    assert third.report.id != first.id
    assert third.report.duplicate_of is None


def test_most_recent_canonical_wins(db, policy, make_report):
    make_report(created_at=NOW - timedelta(days=3), room="1")
    newer = make_report(created_at=NOW - timedelta(days=1), room="2")
    assert find_duplicate(db, "Gore Hall", "hvac", NOW, policy).id == newer.id
