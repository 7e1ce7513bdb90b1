"""
Pattern detection and preventive maintenance work orders.
When one trade accumulates enough incidents inside the pattern window, a preventive
inspection report is generated, dispatched and offered to a technician of that trade.
"""
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import DispatchPolicy
from ..models.models import Report
from .assignment import create_assignment
from .audit import create_audit_log
from .intake import compute_urgency_score
from .notifications import Notifier, deliver
from .scoring import available_technicians
from .sweep import ITEM_ERRORS, Sweep, SweepResult
from .time_rules import window_start


logger = structlog.get_logger(__name__)

ENGINE_NAME = "preventive_maintenance_engine"
ENGINE_REPORTER = "Preventive Maintenance Engine"
SAFETY_TRADES = frozenset({"electrical", "structural", "safety_hazard"})


def detect_patterns(db: Session, now: datetime, policy: DispatchPolicy) -> Dict[str, Dict]:
    """
    Count canonical incidents per trade inside the pattern window.

    Returns:
        {trade: {"count": int, "buildings": [building, ...]}} for every trade seen,
        buildings in order of first occurrence. Earlier preventive work orders count
        like any other report.
    """
    cutoff = window_start(now, days=policy.pattern_window_days)
    rows = (
        db.query(Report.trade, Report.building)
        .filter(
            Report.created_at >= cutoff,
            Report.duplicate_of.is_(None),
        )
        .order_by(Report.created_at.asc())
        .all()
    )
    counts: Dict[str, Dict] = {}
    for trade, building in rows:
        entry = counts.setdefault(trade, {"count": 0, "buildings": []})
        entry["count"] += 1
        if building not in entry["buildings"]:
            entry["buildings"].append(building)
    return counts


def preventive_alerts(db: Session, now: datetime, policy: DispatchPolicy) -> List[Dict]:
    """Trades at or above the pattern threshold, phrased for the report listing."""
    alerts = []
    for trade, data in detect_patterns(db, now, policy).items():
        if data["count"] >= policy.pattern_threshold:
            alerts.append({
                "trade": trade,
                "count": data["count"],
                "message": (
                    f"Pattern detected: {data['count']} {trade.replace('_', ' ')} issues in the last "
                    f"{policy.pattern_window_days} days. Consider preventive maintenance."
                ),
            })
    return alerts


class PreventiveMaintenanceEngine(Sweep):
    name = "preventive_maintenance"

    def __init__(self, db: Session, notifier: Notifier, policy: DispatchPolicy):
        super().__init__(db, notifier)
        self.policy = policy

    def _run(self, now: datetime, result: SweepResult) -> None:
        counts = detect_patterns(self.db, now, self.policy)
        if not counts:
            result.actions.append("No recent reports to analyze")
            return

        patterns = [(trade, data) for trade, data in counts.items() if data["count"] >= self.policy.pattern_threshold]
        if not patterns:
            result.actions.append("No patterns above threshold")
            return

        for trade, data in patterns:
            try:
                self._generate_work_order(trade, data["count"], data["buildings"], now, result)
            except ITEM_ERRORS as e:
                self._record_failure(result, f"preventive work order for {trade}", e)

    def recent_work_order(self, trade: str, now: datetime) -> Optional[Report]:
        cutoff = window_start(now, days=self.policy.preventive_cooldown_days)
        return (
            self.db.query(Report)
            .filter(
                Report.generated_by == ENGINE_NAME,
                Report.pattern_trade == trade,
                Report.created_at >= cutoff,
            )
            .first()
        )

    def _generate_work_order(self, trade: str, count: int, buildings: List[str], now: datetime,
                             result: SweepResult) -> None:
        if self.recent_work_order(trade, now):
            result.actions.append(
                f"Skipped {trade}: preventive WO already exists within {self.policy.preventive_cooldown_days} days"
            )
            return

        label = trade.replace("_", " ")
        window = self.policy.pattern_window_days
        building_list = ", ".join(buildings)
        safety = trade in SAFETY_TRADES
        report = Report(
            created_at=now,
            building=buildings[0],
            room="",
            floor="",
            description=(
                f"[Preventive Maintenance] Pattern detected: {count} {label} reports across "
                f"{building_list} in the last {window} days. Auto-generated inspection work order."
            ),
            trade=trade,
            priority="high",
            ai_description=(
                f"Preventive maintenance required: {count} {label} incidents detected across "
                f"{len(buildings)} building(s) in {window} days. This pattern suggests a systemic "
                f"issue requiring proactive inspection."
            ),
            suggested_action=(
                f"Schedule a comprehensive {label} inspection across: {building_list}. Check for root "
                f"causes such as aging infrastructure, seasonal factors, or material degradation."
            ),
            safety_concern=safety,
            estimated_cost="$500-2000",
            estimated_time="4-8 hours",
            confidence_score=0.9,
            status="dispatched",
            upvote_count=count,
            urgency_score=compute_urgency_score("high", count, safety, self.policy),
            duplicate_of=None,
            email_sent=False,
            reporter_email=None,
            reporter_name=ENGINE_REPORTER,
            source="preventive",
            generated_by=ENGINE_NAME,
            pattern_trade=trade,
        )
        self.db.add(report)
        self.db.flush()
        create_audit_log(
            self.db,
            entity_type="report",
            entity_id=report.id,
            action="CREATE",
            actor=ENGINE_NAME,
            source="sweep",
            changes_json={"after": {"status": "dispatched", "trade": trade, "priority": "high"}},
            context={"pattern_count": count, "buildings": buildings},
        )
        self.db.commit()
        logger.info("preventive_work_order_created", report_id=str(report.id), trade=trade, count=count)

        technician_id = None
        try:
            technicians = available_technicians(self.db, trade=trade)
            if technicians:
                technician = technicians[0]
                create_assignment(
                    self.db,
                    report,
                    technician,
                    assigned_by=ENGINE_NAME,
                    notes=f"Preventive maintenance: {count} {trade} incidents in {window} days. Inspect: {building_list}",
                    now=now,
                )
                self.db.commit()
                technician_id = technician.id
                deliver(self.notifier.notify_technician, technician, report, "preventive", event="technician_preventive")
                self.db.commit()
            else:
                result.actions.append(f"No available {trade} technician for preventive WO")
        except ITEM_ERRORS as e:
            # The work order itself is committed; only the assignment is lost
            self._record_failure(result, f"preventive assignment for {trade}", e)

        deliver(
            self.notifier.notify_manager,
            f"Preventive maintenance: {label} pattern",
            [
                f"{count} {label} incidents in the last {window} days across: {building_list}.",
                f"Work order {str(report.id)[:8]} was generated and dispatched.",
                "Assigned to a technician." if technician_id else "No technician could be assigned yet.",
            ],
            event="manager_preventive",
        )
        self.db.commit()

        result.work_orders.append({
            "report_id": report.id,
            "trade": trade,
            "count": count,
            "buildings": buildings,
            "technician_id": technician_id,
        })
        result.actions.append(f"Created preventive WO for {trade}: {count} incidents across {building_list}")
