# tests/test_technicians.py
"""
Tests for technician roster management.

Run:
    pytest tests/test_technicians.py -v
"""

import pytest

from fixit.models.models import AuditLog, Technician
from fixit.schemas.dispatch import TechnicianCreate, TechnicianUpdate
from fixit.services.errors import AssignmentConflict, ValidationFailed
from fixit.services.technicians import (
    create_technician,
    delete_technician,
    list_technicians,
    update_technician,
)


def _payload(**overrides):
    data = {
        "name": "Maria Lopez",
        "email": "MLopez@Facilities.udel.edu ",
        "trade": "plumbing",
        "assigned_buildings": ["Gore Hall"],
    }
    data.update(overrides)
    return TechnicianCreate(**data)


# ============================================================
# TEST: CREATE / UPDATE
# ============================================================

def test_create_normalizes_email_and_audits(db):
    tech = create_technician(db, _payload())
    assert tech.email == "mlopez@facilities.udel.edu"
    assert tech.is_available is True
    assert db.query(AuditLog).filter(AuditLog.entity_id == tech.id, AuditLog.action == "CREATE").count() == 1


def test_create_rejects_unknown_building(db):
    with pytest.raises(ValidationFailed):
        create_technician(db, _payload(assigned_buildings=["Hogwarts"]))


def test_create_rejects_duplicate_email(db):
    create_technician(db, _payload())
    with pytest.raises(ValidationFailed):
        create_technician(db, _payload(name="Someone Else"))
    assert db.query(Technician).count() == 1


def test_update_changes_fields(db):
    tech = create_technician(db, _payload())
    updated = update_technician(db, tech.id, TechnicianUpdate(is_available=False, trade="hvac"))
    assert updated.is_available is False
    assert updated.trade == "hvac"
    entry = db.query(AuditLog).filter(AuditLog.entity_id == tech.id, AuditLog.action == "UPDATE").one()
    assert entry.changes_json


def test_empty_update_rejected(db):
    tech = create_technician(db, _payload())
    with pytest.raises(ValidationFailed):
        update_technician(db, tech.id, TechnicianUpdate())


def test_list_filters(db, make_technician):
    make_technician("Amy", trade="hvac")
    make_technician("Bob", trade="plumbing", is_available=False)
    assert [t.name for t in list_technicians(db)] == ["Amy", "Bob"]
    assert [t.name for t in list_technicians(db, available=True)] == ["Amy"]
    assert [t.name for t in list_technicians(db, trade="plumbing")] == ["Bob"]


# ============================================================
# TEST: DELETE GUARD
# ============================================================

def test_delete_refused_with_active_assignment(db, make_technician, make_report, make_assignment):
    tech = make_technician("Amy")
    make_assignment(make_report(), tech, status="accepted")
    with pytest.raises(AssignmentConflict):
        delete_technician(db, tech.id)
    assert db.query(Technician).count() == 1


def test_delete_with_history_retires(db, make_technician, make_report, make_assignment):
    tech = make_technician("Amy")
    make_assignment(make_report(), tech, status="completed")
    delete_technician(db, tech.id)
    db.refresh(tech)
    assert tech.is_available is False


def test_delete_without_history_removes_row(db, make_technician):
    tech = make_technician("Amy")
    tech_id = tech.id
    delete_technician(db, tech_id)
    assert db.query(Technician).filter(Technician.id == tech_id).first() is None
