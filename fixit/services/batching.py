"""
Job batching sweep.
Groups recent unassigned reports by (building, trade), hands each group to one technician
as a floor-ordered route, and sends that technician a single briefing.
"""
import re
from datetime import datetime
from typing import Dict, List, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, ScoringWeights
from ..models.models import Assignment, Report, ACTIVE_ASSIGNMENT_STATUSES
from .assignment import create_assignment
from .notifications import Notifier, deliver
from .scoring import active_assignment_counts, available_technicians, rank_technicians
from .sweep import ITEM_ERRORS, Sweep, SweepResult
from .time_rules import window_start


logger = structlog.get_logger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def floor_number(floor) -> int:
    """Leading integer of a floor label; missing or non-numeric floors sort as 0."""
    match = _LEADING_INT.match(str(floor or ""))
    return int(match.group(1)) if match else 0


def order_route(reports: List[Report]) -> List[Report]:
    """Lowest floor first; reports on the same floor keep their incoming order."""
    return sorted(reports, key=lambda r: floor_number(r.floor))


def describe_route(reports: List[Report]) -> str:
    return " -> ".join(f"Floor {r.floor or '?'}, Room {r.room or '?'}" for r in reports)


class BatchingEngine(Sweep):
    name = "batching"

    def __init__(self, db: Session, notifier: Notifier, weights: ScoringWeights, policy: DispatchPolicy):
        super().__init__(db, notifier)
        self.weights = weights
        self.policy = policy

    def _run(self, now: datetime, result: SweepResult) -> None:
        cutoff = window_start(now, hours=self.policy.batch_window_hours)
        reports = (
            self.db.query(Report)
            .filter(
                Report.status == "dispatched",
                Report.duplicate_of.is_(None),
                Report.created_at >= cutoff,
            )
            .order_by(Report.building.asc(), Report.trade.asc(), Report.created_at.asc())
            .all()
        )
        if not reports:
            result.actions.append("No batchable reports found")
            return

        assigned_ids = {
            row.report_id
            for row in self.db.query(Assignment.report_id)
            .filter(
                Assignment.report_id.in_([r.id for r in reports]),
                Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            )
            .all()
        }
        unassigned = [r for r in reports if r.id not in assigned_ids]
        if not unassigned:
            result.actions.append("All dispatched reports already assigned")
            return

        groups: Dict[Tuple[str, str], List[Report]] = {}
        for report in unassigned:
            groups.setdefault((report.building, report.trade), []).append(report)

        for (building, trade), group in groups.items():
            try:
                self._dispatch_group(building, trade, group, now, result)
            except ITEM_ERRORS as e:
                self._record_failure(result, f"batch {trade} at {building}", e)

    def _dispatch_group(self, building: str, trade: str, reports: List[Report], now: datetime,
                        result: SweepResult) -> None:
        technicians = available_technicians(self.db)
        if not technicians:
            result.actions.append(f"Skipped {len(reports)} {trade} jobs at {building}: no available technicians")
            return

        loads = active_assignment_counts(self.db, [t.id for t in technicians])
        best = rank_technicians(technicians, building, trade, loads, self.weights)[0]
        technician = best.technician

        route = order_route(reports)
        route_text = describe_route(route)
        label = trade.replace("_", " ")
        for position, report in enumerate(route, start=1):
            create_assignment(
                self.db,
                report,
                technician,
                assigned_by="batch_engine",
                notes=f"BATCHED JOB ({position}/{len(route)}) - {building} {label} sweep. Route: {route_text}",
                now=now,
            )
        self.db.commit()
        logger.info(
            "batch_assigned",
            building=building,
            trade=trade,
            report_count=len(route),
            technician_id=str(technician.id),
            score=best.score,
        )

        deliver(
            self.notifier.notify_technician,
            technician,
            route[0],
            "batch",
            {"count": len(route), "route": route_text, "report_ids": [str(r.id) for r in route]},
            event="technician_batch",
        )
        self.db.commit()

        result.batches.append({
            "building": building,
            "trade": trade,
            "report_count": len(route),
            "technician_id": technician.id,
            "technician_name": technician.name,
            "route": [str(r.id) for r in route],
        })
        result.actions.append(f"Batched {len(route)} {trade} jobs at {building} -> assigned to {technician.name}")
