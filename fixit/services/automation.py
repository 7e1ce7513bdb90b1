"""
Runs every sweep in sequence, in process. One engine failing does not stop the next.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, ScoringWeights
from .batching import BatchingEngine
from .errors import DispatchError
from .escalation import EscalationEngine
from .notifications import Notifier
from .preventive import PreventiveMaintenanceEngine
from .sweep import SweepResult
from .time_rules import utcnow


logger = structlog.get_logger(__name__)


ENGINE_CATALOGUE = [
    {
        "name": "Escalation Engine",
        "endpoint": "/automation/escalation",
        "description": "Auto-reassigns unaccepted jobs, notifies managers on SLA breaches",
    },
    {
        "name": "Job Batching Engine",
        "endpoint": "/automation/batch",
        "description": "Groups same-building same-trade reports into one technician route",
    },
    {
        "name": "Preventive Maintenance",
        "endpoint": "/automation/preventive",
        "description": "Generates inspection work orders when report patterns are detected",
    },
    {
        "name": "Follow-up Notifications",
        "endpoint": "PATCH /assignments/{id}",
        "description": "Notifies reporters when their report is resolved",
    },
]


def _summarize(result: SweepResult, extra: Optional[str] = None) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "success": True,
        "actions": result.actions,
        "timestamp": result.timestamp,
    }
    if extra:
        summary[extra] = getattr(result, extra)
    return summary


def run_all(
    db: Session,
    notifier: Notifier,
    weights: ScoringWeights,
    policy: DispatchPolicy,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    engines = [
        ("escalation", EscalationEngine(db, notifier, policy), None),
        ("batch_jobs", BatchingEngine(db, notifier, weights, policy), "batches"),
        ("preventive_maintenance", PreventiveMaintenanceEngine(db, notifier, policy), "work_orders"),
    ]
    results: Dict[str, Any] = {}
    for key, engine, extra in engines:
        try:
            results[key] = _summarize(engine.run(now), extra)
        except DispatchError as e:
            logger.error("engine_failed", engine=key, error=e.message)
            results[key] = {"success": False, "error": e.to_dict()}
    return {"success": True, "timestamp": now, "engines": results}
