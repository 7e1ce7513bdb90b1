"""
SLA escalation sweep.
Three independent passes: unassigned reports, unaccepted assignments, stale in-progress work.
"""
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, Settings, settings as default_settings
from ..models.models import Assignment, Report
from .assignment import create_assignment, get_active_assignment
from .lifecycle import apply_transition
from .notifications import Notifier, deliver
from .scoring import active_assignment_counts, available_technicians, pick_least_loaded
from .sweep import ITEM_ERRORS, Sweep, SweepResult, short_id
from .time_rules import format_local, minutes_since


logger = structlog.get_logger(__name__)

UNACCEPTED_NOTE = "Auto-cancelled: not accepted"


class EscalationEngine(Sweep):
    name = "escalation"

    def __init__(self, db: Session, notifier: Notifier, policy: DispatchPolicy, config: Optional[Settings] = None):
        super().__init__(db, notifier)
        self.policy = policy
        self.config = config or default_settings

    def unassigned_threshold(self, priority: str) -> int:
        if priority == "critical":
            return self.policy.unassigned_critical_min
        if priority == "high":
            return self.policy.unassigned_high_min
        return self.policy.unassigned_default_min

    def unaccepted_threshold(self, priority: Optional[str]) -> int:
        if priority == "critical":
            return self.policy.unaccepted_critical_min
        return self.policy.unaccepted_default_min

    def _run(self, now: datetime, result: SweepResult) -> None:
        self.escalate_unassigned(now, result)
        self.escalate_unaccepted(now, result)
        self.flag_stale(now, result)

    # Pass 1

    def escalate_unassigned(self, now: datetime, result: SweepResult) -> None:
        reports = (
            self.db.query(Report)
            .filter(
                Report.status.in_(("submitted", "dispatched")),
                Report.duplicate_of.is_(None),
            )
            .order_by(Report.created_at.asc())
            .all()
        )
        for report in reports:
            try:
                self._escalate_unassigned_report(report, now, result)
            except ITEM_ERRORS as e:
                self._record_failure(result, f"report {short_id(report.id)}", e)

    def _escalate_unassigned_report(self, report: Report, now: datetime, result: SweepResult) -> None:
        if get_active_assignment(self.db, report.id):
            return
        elapsed = minutes_since(report.created_at, now)
        threshold = self.unassigned_threshold(report.priority)
        if elapsed < threshold:
            return

        unaccepted = self._unaccepted_cancellations(report)
        if unaccepted:
            last_cancelled = max(a.updated_at or a.created_at for a in unaccepted)
            # Pass 2 already alerted the manager about this report
            if minutes_since(last_cancelled, now) < self.unaccepted_threshold(report.priority):
                return

        technicians = available_technicians(self.db, exclude_ids={a.technician_id for a in unaccepted})
        if technicians:
            loads = active_assignment_counts(self.db, [t.id for t in technicians])
            technician = pick_least_loaded(technicians, loads)
            create_assignment(
                self.db,
                report,
                technician,
                assigned_by="escalation_engine",
                notes=f"Auto-assigned by escalation engine after {elapsed}m without assignment.",
                now=now,
            )
            self.db.commit()
            deliver(self.notifier.notify_technician, technician, report, "assignment", event="technician_assignment")
            self.db.commit()
            result.actions.append(
                f"Auto-assigned report {short_id(report.id)} to {technician.name} ({elapsed}m overdue)"
            )
        else:
            result.actions.append(f"No available technician for report {short_id(report.id)}")

        deliver(
            self.notifier.notify_manager,
            "SLA escalation: unassigned report",
            [
                f"Report unassigned for {elapsed} minutes (SLA: {threshold}m for {report.priority} priority)",
                "",
                *self._report_lines(report, elapsed),
            ],
            event="manager_sla_unassigned",
        )
        self.db.commit()
        result.actions.append(f"SLA escalation: report {short_id(report.id)} unassigned for {elapsed}m")

    def _unaccepted_cancellations(self, report: Report) -> List[Assignment]:
        """Assignments on this report the sweep cancelled because nobody accepted them."""
        return (
            self.db.query(Assignment)
            .filter(
                Assignment.report_id == report.id,
                Assignment.status == "cancelled",
                Assignment.notes.like(f"{UNACCEPTED_NOTE}%"),
            )
            .all()
        )

    # Pass 2

    def escalate_unaccepted(self, now: datetime, result: SweepResult) -> None:
        pending = (
            self.db.query(Assignment)
            .filter(Assignment.status == "pending")
            .order_by(Assignment.created_at.asc())
            .all()
        )
        for assignment in pending:
            try:
                self._escalate_unaccepted_assignment(assignment, now, result)
            except ITEM_ERRORS as e:
                self._record_failure(result, f"assignment {short_id(assignment.id)}", e)

    def _escalate_unaccepted_assignment(self, assignment: Assignment, now: datetime, result: SweepResult) -> None:
        report = assignment.report
        elapsed = minutes_since(assignment.created_at, now)
        threshold = self.unaccepted_threshold(report.priority if report else None)
        if elapsed < threshold:
            return

        previous = assignment.technician
        apply_transition(
            self.db,
            assignment,
            "cancelled",
            actor="escalation_engine",
            source="sweep",
            notes=f"{UNACCEPTED_NOTE} within {threshold}m",
            now=now,
        )
        self.db.flush()

        replacement = None
        if report is not None:
            others = available_technicians(self.db, exclude_ids=[assignment.technician_id])
            if others:
                loads = active_assignment_counts(self.db, [t.id for t in others])
                replacement = pick_least_loaded(others, loads)
                create_assignment(
                    self.db,
                    report,
                    replacement,
                    assigned_by="escalation_engine",
                    notes=f"Reassigned: previous tech did not accept within {threshold}m.",
                    now=now,
                )
        self.db.commit()

        previous_name = previous.name if previous else short_id(assignment.technician_id)
        if replacement is not None:
            deliver(self.notifier.notify_technician, replacement, report, "reassignment", event="technician_reassignment")
            self.db.commit()
            result.actions.append(
                f"Reassigned {short_id(assignment.report_id)} from {previous_name} to {replacement.name}"
            )
        else:
            result.actions.append(
                f"Cancelled assignment {short_id(assignment.id)} for {previous_name}; no replacement technician available"
            )

        if report is not None:
            outcome = "auto-reassigned" if replacement is not None else "no replacement available"
            deliver(
                self.notifier.notify_manager,
                "SLA escalation: assignment not accepted",
                [
                    f"Assignment not accepted for {elapsed} minutes ({outcome})",
                    "",
                    *self._report_lines(report, elapsed),
                ],
                event="manager_sla_unaccepted",
            )
            self.db.commit()

    # Pass 3

    def flag_stale(self, now: datetime, result: SweepResult) -> None:
        jobs = (
            self.db.query(Assignment)
            .filter(Assignment.status == "in_progress")
            .order_by(Assignment.started_at.asc())
            .all()
        )
        threshold = self.policy.stale_in_progress_min
        lines: List[str] = []
        stale_count = 0
        for job in jobs:
            elapsed = minutes_since(job.started_at or job.created_at, now)
            if elapsed >= threshold and job.report is not None:
                stale_count += 1
                lines.extend(self._report_lines(job.report, elapsed))
                lines.append("")

        if not stale_count:
            return
        hours = threshold / 60
        deliver(
            self.notifier.notify_manager,
            "Stale in-progress jobs",
            [
                f"{stale_count} job(s) in progress for over {hours:g} hours without completion",
                "",
                *lines,
            ],
            event="manager_stale_jobs",
        )
        self.db.commit()
        result.actions.append(f"Flagged {stale_count} stale in-progress jobs to manager")

    def _report_lines(self, report: Report, elapsed: int) -> List[str]:
        return [
            f"Report {short_id(report.id)}: {report.priority} {report.trade.replace('_', ' ')} "
            f"at {report.building}, Floor {report.floor or '?'}, Room {report.room or '?'}",
            f"Reported {format_local(report.created_at, self.config.campus_timezone)} ({elapsed}m elapsed)",
        ]
