"""
Assignment lifecycle state machine.
pending -> accepted -> in_progress -> completed, and any active state -> cancelled.
Each transition stamps the assignment and propagates to the report status.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import Assignment, Report
from .audit import create_audit_log
from .errors import InvalidTransition, NotFound
from .notifications import Notifier, deliver
from .time_rules import utcnow


logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"accepted", "cancelled"}),
    "accepted": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

# Report status set by each assignment transition; cancelled leaves the report alone
REPORT_STATUS_ON_TRANSITION: Dict[str, str] = {
    "accepted": "in_progress",
    "in_progress": "in_progress",
    "completed": "resolved",
}


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def apply_transition(
    db: Session,
    assignment: Assignment,
    new_status: str,
    actor: str = "technician",
    source: str = "api",
    notes: Optional[str] = None,
    completion_notes: Optional[str] = None,
    completion_photo_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Report]:
    """
    Validate and apply one transition without committing.

    Returns:
        The report when its status changed, else None

    Raises:
        InvalidTransition: out-of-order or post-terminal change; nothing is modified
    """
    current = assignment.status
    if not can_transition(current, new_status):
        raise InvalidTransition(current, new_status)

    now = now or utcnow()
    assignment.status = new_status
    assignment.updated_at = now
    if notes is not None:
        assignment.notes = notes
    if completion_notes:
        assignment.completion_notes = completion_notes
    if completion_photo_url:
        assignment.completion_photo_url = completion_photo_url
    if new_status == "accepted":
        assignment.started_at = now
    elif new_status == "in_progress" and assignment.started_at is None:
        assignment.started_at = now
    elif new_status == "completed":
        assignment.completed_at = now

    changed_report = None
    report_status = REPORT_STATUS_ON_TRANSITION.get(new_status)
    report = assignment.report
    if report_status and report is not None and report.status != report_status:
        report.status = report_status
        report.updated_at = now
        changed_report = report

    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="CANCEL" if new_status == "cancelled" else "STATUS",
        actor=actor,
        source=source,
        changes_json={"status": {"before": current, "after": new_status}},
        context={"report_id": str(assignment.report_id), "report_status": report.status if report else None},
    )
    return changed_report


def update_assignment_status(
    db: Session,
    assignment_id,
    new_status: str,
    notifier: Notifier,
    completion_notes: Optional[str] = None,
    completion_photo_url: Optional[str] = None,
    actor: str = "technician",
    now: Optional[datetime] = None,
) -> Assignment:
    """
    Drive one assignment through the state machine and commit.
    On completion the reporter (if known) is told the report is resolved, best-effort.
    """
    assignment = db.query(Assignment).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise NotFound(f"Assignment {assignment_id} not found")

    previous = assignment.status
    apply_transition(
        db,
        assignment,
        new_status,
        actor=actor,
        completion_notes=completion_notes,
        completion_photo_url=completion_photo_url,
        now=now,
    )
    db.commit()
    logger.info(
        "assignment_status_changed",
        assignment_id=str(assignment.id),
        report_id=str(assignment.report_id),
        before=previous,
        after=new_status,
    )

    if new_status == "completed" and assignment.report is not None and assignment.report.reporter_email:
        deliver(
            notifier.notify_reporter,
            assignment.report,
            "resolved",
            {"completion_notes": assignment.completion_notes},
            event="reporter_resolution",
        )
        db.commit()
    return assignment
