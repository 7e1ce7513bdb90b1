"""
Shared plumbing for the scheduled sweeps (escalation, batching, preventive maintenance).
Per-item failures are rolled back and recorded in the action list; only an unreachable
store aborts a sweep.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..logging import sweep_context
from .errors import DependencyFailure, DispatchError
from .notifications import Notifier
from .time_rules import utcnow


logger = structlog.get_logger(__name__)

# Failures that are local to one report, assignment or group
ITEM_ERRORS = (DispatchError, IntegrityError)


@dataclass
class SweepResult:
    actions: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    batches: List[Dict[str, Any]] = field(default_factory=list)
    work_orders: List[Dict[str, Any]] = field(default_factory=list)


def short_id(value) -> str:
    return str(value)[:8]


class Sweep:
    name = "sweep"

    def __init__(self, db: Session, notifier: Notifier):
        self.db = db
        self.notifier = notifier

    def run(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult(timestamp=now)
        with sweep_context(self.name):
            try:
                self._run(now, result)
            except OperationalError as e:
                self.db.rollback()
                logger.error("sweep_aborted", error=str(e))
                raise DependencyFailure(f"{self.name} could not reach the database") from e
            logger.info("sweep_finished", actions=len(result.actions))
        return result

    def _run(self, now: datetime, result: SweepResult) -> None:
        raise NotImplementedError

    def _record_failure(self, result: SweepResult, what: str, error: Exception) -> None:
        self.db.rollback()
        message = getattr(error, "message", None) or str(error)
        logger.warning("sweep_item_failed", item=what, error=message)
        result.actions.append(f"Failed to process {what}: {message}")
