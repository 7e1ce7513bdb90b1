"""
Technician roster management.
"""
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import Assignment, Technician, ACTIVE_ASSIGNMENT_STATUSES
from ..schemas.dispatch import TechnicianCreate, TechnicianUpdate
from .assignment import get_technician
from .audit import compute_diff, create_audit_log
from .campus import is_known_building
from .errors import AssignmentConflict, ValidationFailed


logger = structlog.get_logger(__name__)


def _check_buildings(buildings: Optional[List[str]]) -> None:
    unknown = [b for b in (buildings or []) if not is_known_building(b)]
    if unknown:
        raise ValidationFailed(f"Unknown building(s): {', '.join(unknown)}")


def _snapshot(technician: Technician) -> dict:
    return {
        "name": technician.name,
        "email": technician.email,
        "phone": technician.phone,
        "trade": technician.trade,
        "assigned_buildings": list(technician.assigned_buildings or []),
        "is_available": technician.is_available,
    }


def list_technicians(db: Session, available: Optional[bool] = None, trade: Optional[str] = None) -> List[Technician]:
    query = db.query(Technician)
    if available is not None:
        query = query.filter(Technician.is_available.is_(available))
    if trade:
        query = query.filter(Technician.trade == trade)
    return query.order_by(Technician.name).all()


def create_technician(db: Session, payload: TechnicianCreate) -> Technician:
    _check_buildings(payload.assigned_buildings)
    technician = Technician(
        name=payload.name.strip(),
        email=payload.email.strip().lower(),
        phone=payload.phone,
        trade=payload.trade.value,
        assigned_buildings=list(payload.assigned_buildings),
        is_available=payload.is_available,
    )
    db.add(technician)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise ValidationFailed(f"A technician with email {technician.email} already exists") from e
    create_audit_log(db, "technician", technician.id, "CREATE", actor="manager", source="api",
                     changes_json={"after": _snapshot(technician)})
    db.commit()
    db.refresh(technician)
    return technician


def update_technician(db: Session, technician_id, payload: TechnicianUpdate) -> Technician:
    technician = get_technician(db, technician_id)
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationFailed("No valid fields to update")
    if "assigned_buildings" in updates:
        _check_buildings(updates["assigned_buildings"])

    before = _snapshot(technician)
    for key, value in updates.items():
        if key == "trade" and value is not None:
            value = value.value if hasattr(value, "value") else value
        if key == "assigned_buildings" and value is None:
            value = []
        setattr(technician, key, value)
    technician.updated_at = datetime.utcnow()
    create_audit_log(db, "technician", technician.id, "UPDATE", actor="manager", source="api",
                     changes_json=compute_diff(before, _snapshot(technician)))
    db.commit()
    db.refresh(technician)
    return technician


def delete_technician(db: Session, technician_id) -> None:
    """Delete a technician; refused while any pending/accepted/in_progress assignment exists."""
    technician = get_technician(db, technician_id)
    active = (
        db.query(Assignment)
        .filter(
            Assignment.technician_id == technician.id,
            Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        )
        .count()
    )
    if active:
        raise AssignmentConflict(f"Cannot delete: {active} active assignment(s)")
    history = db.query(Assignment).filter(Assignment.technician_id == technician.id).count()
    if history:
        # Historical assignments keep their technician; retire instead of deleting the row
        technician.is_available = False
        technician.updated_at = datetime.utcnow()
        action = "RETIRE"
    else:
        db.delete(technician)
        action = "DELETE"
    create_audit_log(db, "technician", technician_id, action, actor="manager", source="api",
                     changes_json={"before": _snapshot(technician)})
    db.commit()
    logger.info("technician_removed", technician_id=str(technician_id), action=action)
