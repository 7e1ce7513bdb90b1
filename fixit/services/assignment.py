"""
Assignment resolver.
Selects a technician for a report, records the assignment and moves the report to dispatched.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import ScoringWeights
from ..models.models import Assignment, Report, Technician, ACTIVE_ASSIGNMENT_STATUSES
from .audit import create_audit_log
from .errors import AssignmentConflict, NoAvailableTechnician, NotFound, ValidationFailed
from .notifications import Notifier, deliver
from .scoring import active_assignment_counts, available_technicians, rank_technicians
from .time_rules import utcnow


logger = structlog.get_logger(__name__)


@dataclass
class AssignmentResult:
    assignment: Assignment
    technician: Technician
    score: Optional[int] = None
    all_scores: List[Dict[str, Any]] = field(default_factory=list)
    notified: bool = False


def get_report(db: Session, report_id) -> Report:
    report = db.query(Report).filter(Report.id == report_id).first()
    if not report:
        raise NotFound(f"Report {report_id} not found")
    return report


def get_technician(db: Session, technician_id) -> Technician:
    technician = db.query(Technician).filter(Technician.id == technician_id).first()
    if not technician:
        raise NotFound(f"Technician {technician_id} not found")
    return technician


def get_active_assignment(db: Session, report_id) -> Optional[Assignment]:
    return (
        db.query(Assignment)
        .filter(
            Assignment.report_id == report_id,
            Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        )
        .first()
    )


def create_assignment(
    db: Session,
    report: Report,
    technician: Technician,
    assigned_by: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Assignment:
    """
    Insert a pending assignment after re-reading that the report has no active one.
    The partial unique index backs the check if a concurrent writer slips in between.
    Does not commit.
    """
    existing = get_active_assignment(db, report.id)
    if existing:
        raise AssignmentConflict(
            f"Report {report.id} already has an active assignment ({existing.status})"
        )
    assignment = Assignment(
        report_id=report.id,
        technician_id=technician.id,
        assigned_by=assigned_by,
        status="pending",
        notes=notes,
        created_at=now or utcnow(),
    )
    db.add(assignment)
    try:
        db.flush()
    except IntegrityError as e:
        raise AssignmentConflict(f"Report {report.id} already has an active assignment") from e
    create_audit_log(
        db,
        entity_type="assignment",
        entity_id=assignment.id,
        action="ASSIGN",
        actor=assigned_by,
        source="api" if assigned_by in ("ai", "manager") else "sweep",
        changes_json={"after": {"status": "pending", "technician_id": str(technician.id)}},
        context={"report_id": str(report.id), "notes": notes},
    )
    return assignment


def mark_dispatched(report: Report, now: Optional[datetime] = None) -> None:
    """Idempotent move of a report to dispatched."""
    if report.status != "dispatched":
        report.status = "dispatched"
        report.updated_at = now or utcnow()


class AssignmentResolver:
    def __init__(self, db: Session, notifier: Notifier, weights: ScoringWeights):
        self.db = db
        self.notifier = notifier
        self.weights = weights

    def assign(self, report_id, assigned_by: str = "ai", now: Optional[datetime] = None) -> AssignmentResult:
        """
        Score every available technician and assign the best one.

        Raises:
            NotFound: report does not exist
            NoAvailableTechnician: nobody is available; the report is left untouched
            AssignmentConflict: the report already has an active assignment
        """
        report = get_report(self.db, report_id)
        self._check_assignable(report)

        technicians = available_technicians(self.db)
        if not technicians:
            raise NoAvailableTechnician()

        loads = active_assignment_counts(self.db, [t.id for t in technicians])
        ranked = rank_technicians(technicians, report.building, report.trade, loads, self.weights)
        best = ranked[0]

        assignment = create_assignment(
            self.db,
            report,
            best.technician,
            assigned_by=assigned_by,
            notes=f"AI auto-assigned. Score: {best.score}. Workload: {best.load} active jobs.",
            now=now,
        )
        mark_dispatched(report, now)
        self.db.commit()

        logger.info(
            "report_assigned",
            report_id=str(report.id),
            technician_id=str(best.technician.id),
            score=best.score,
            load=best.load,
            assigned_by=assigned_by,
        )
        notified = self._notify(best.technician, report)
        return AssignmentResult(
            assignment=assignment,
            technician=best.technician,
            score=best.score,
            all_scores=[
                {"technician_id": str(s.technician.id), "name": s.technician.name, "score": s.score, "load": s.load}
                for s in ranked
            ],
            notified=notified,
        )

    def assign_to(
        self,
        report_id,
        technician_id,
        assigned_by: str = "manager",
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AssignmentResult:
        """Manual bind: no scoring, same dispatch and notification steps."""
        report = get_report(self.db, report_id)
        technician = get_technician(self.db, technician_id)
        self._check_assignable(report)

        assignment = create_assignment(self.db, report, technician, assigned_by=assigned_by, notes=notes, now=now)
        mark_dispatched(report, now)
        self.db.commit()

        logger.info(
            "report_assigned_manually",
            report_id=str(report.id),
            technician_id=str(technician.id),
            assigned_by=assigned_by,
        )
        notified = self._notify(technician, report)
        return AssignmentResult(assignment=assignment, technician=technician, notified=notified)

    def _check_assignable(self, report: Report) -> None:
        if report.status == "resolved":
            raise ValidationFailed(f"Report {report.id} is already resolved")
        if report.duplicate_of is not None:
            raise ValidationFailed(
                f"Report {report.id} is a duplicate of {report.duplicate_of}; assign the original instead"
            )

    def _notify(self, technician: Technician, report: Report) -> bool:
        # Best-effort: the assignment is already committed
        notified = deliver(self.notifier.notify_technician, technician, report, "assignment", event="technician_assignment")
        self.db.commit()
        return notified
