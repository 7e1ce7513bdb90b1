"""
Report intake with deduplication.
A submission matching an open canonical report (same building and trade, inside the dedup
window) is recorded as a duplicate and upvotes the original; anything else becomes a new
canonical report that is dispatched straight away.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, ScoringWeights
from ..models.models import Assignment, Report
from ..schemas.dispatch import ReportDraft
from .assignment import AssignmentResolver
from .audit import create_audit_log
from .campus import building_coordinates, is_known_building, nearest_building
from .errors import NoAvailableTechnician, ValidationFailed
from .notifications import Notifier, deliver
from .time_rules import utcnow, window_start


logger = structlog.get_logger(__name__)


@dataclass
class IntakeResult:
    report: Report
    duplicated: bool
    original_id: Optional[object] = None
    assignment: Optional[Assignment] = None


def compute_urgency_score(priority: str, upvote_count: int, safety_concern: bool, policy: DispatchPolicy) -> float:
    base = policy.priority_base_scores.get(priority, policy.priority_base_scores.get("low", 1))
    return base + upvote_count * policy.upvote_weight + (policy.safety_bonus if safety_concern else 0)


def find_duplicate(db: Session, building: str, trade: str, now: datetime, policy: DispatchPolicy) -> Optional[Report]:
    """Most recent open canonical report for the same building and trade inside the dedup window."""
    cutoff = window_start(now, days=policy.dedup_window_days)
    return (
        db.query(Report)
        .filter(
            Report.building == building,
            Report.trade == trade,
            Report.status != "resolved",
            Report.duplicate_of.is_(None),
            Report.created_at >= cutoff,
        )
        .order_by(Report.created_at.desc())
        .first()
    )


def resolve_building(draft: ReportDraft) -> str:
    if draft.building:
        if not is_known_building(draft.building):
            raise ValidationFailed(f"Unknown building: {draft.building}")
        return draft.building
    if draft.latitude is not None and draft.longitude is not None:
        nearest = nearest_building(draft.latitude, draft.longitude)
        if nearest:
            return nearest[0]
    raise ValidationFailed("building is required (or coordinates within 200m of a campus building)")


class IntakeService:
    def __init__(self, db: Session, notifier: Notifier, weights: ScoringWeights, policy: DispatchPolicy):
        self.db = db
        self.notifier = notifier
        self.policy = policy
        self.resolver = AssignmentResolver(db, notifier, weights)

    def intake(self, draft: ReportDraft, now: Optional[datetime] = None) -> IntakeResult:
        now = now or utcnow()
        building = resolve_building(draft)
        analysis = draft.ai_analysis
        trade = analysis.trade.value
        priority = analysis.priority.value

        original = find_duplicate(self.db, building, trade, now, self.policy)
        if original:
            return self._record_duplicate(draft, original, building, now)

        latitude, longitude = draft.latitude, draft.longitude
        if latitude is None or longitude is None:
            coords = building_coordinates(building)
            if coords:
                latitude, longitude = coords

        # The reporter's own submission counts as the first vote
        report = self._new_report(
            draft,
            building,
            created_at=now,
            latitude=latitude,
            longitude=longitude,
            status="dispatched",
            upvote_count=1,
            urgency_score=compute_urgency_score(priority, 1, analysis.safety_concern, self.policy),
            duplicate_of=None,
        )
        self.db.add(report)
        self.db.flush()
        create_audit_log(
            self.db,
            entity_type="report",
            entity_id=report.id,
            action="CREATE",
            actor=draft.reporter_email or draft.source.value,
            source="api",
            changes_json={"after": {"status": "dispatched", "trade": trade, "priority": priority}},
            context={"building": building},
        )
        self.db.commit()
        logger.info("report_created", report_id=str(report.id), building=building, trade=trade, priority=priority)

        if deliver(self.notifier.notify_department, report, event="department_dispatch"):
            report.email_sent = True
            report.dispatched_at = now
        self.db.commit()

        assignment = None
        try:
            assignment = self.resolver.assign(report.id, assigned_by="ai", now=now).assignment
        except NoAvailableTechnician:
            # Left dispatched and unassigned; the escalation sweep picks it up
            logger.warning("auto_assign_skipped", report_id=str(report.id), reason="no_available_technician")
        return IntakeResult(report=report, duplicated=False, assignment=assignment)

    def _record_duplicate(self, draft: ReportDraft, original: Report, building: str, now: datetime) -> IntakeResult:
        original.upvote_count = (original.upvote_count or 0) + 1
        original.urgency_score = compute_urgency_score(
            original.priority, original.upvote_count, original.safety_concern, self.policy
        )
        original.updated_at = now

        duplicate = self._new_report(
            draft,
            building,
            created_at=now,
            latitude=draft.latitude,
            longitude=draft.longitude,
            status="submitted",
            upvote_count=0,
            urgency_score=0,
            duplicate_of=original.id,
        )
        self.db.add(duplicate)
        self.db.flush()
        create_audit_log(
            self.db,
            entity_type="report",
            entity_id=duplicate.id,
            action="DEDUPLICATE",
            actor=draft.reporter_email or draft.source.value,
            source="api",
            changes_json={"after": {"duplicate_of": str(original.id)}},
            context={"original_upvotes": original.upvote_count, "original_urgency": original.urgency_score},
        )
        self.db.commit()
        logger.info(
            "report_deduplicated",
            report_id=str(duplicate.id),
            original_id=str(original.id),
            upvotes=original.upvote_count,
            urgency_score=original.urgency_score,
        )
        return IntakeResult(report=duplicate, duplicated=True, original_id=original.id)

    def _new_report(self, draft: ReportDraft, building: str, **fields) -> Report:
        analysis = draft.ai_analysis
        return Report(
            building=building,
            room=draft.room,
            floor=draft.floor,
            description=draft.description,
            photo_url=draft.photo_url,
            trade=analysis.trade.value,
            priority=analysis.priority.value,
            ai_description=analysis.description,
            suggested_action=analysis.suggested_action,
            safety_concern=analysis.safety_concern,
            estimated_cost=analysis.estimated_cost,
            estimated_time=analysis.estimated_time,
            confidence_score=analysis.confidence_score,
            email_sent=False,
            reporter_email=draft.reporter_email,
            reporter_name=draft.reporter_name,
            source=draft.source.value,
            **fields,
        )
