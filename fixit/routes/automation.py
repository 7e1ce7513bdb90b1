"""
Scheduled sweep endpoints.
Called by cron or a manager; each sweep is stateless and safe to run repeatedly.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, ScoringWeights
from ..db import get_db
from ..dependencies import get_dispatch_policy, get_notifier, get_scoring_weights
from ..schemas.dispatch import (
    AutomationRunResponse,
    BatchSweepResponse,
    PreventiveSweepResponse,
    SweepResponse,
)
from ..services.automation import ENGINE_CATALOGUE, run_all
from ..services.batching import BatchingEngine
from ..services.escalation import EscalationEngine
from ..services.notifications import Notifier
from ..services.preventive import PreventiveMaintenanceEngine


router = APIRouter(prefix="/automation", tags=["automation"])


@router.get("")
def list_engines():
    return {"engines": ENGINE_CATALOGUE, "trigger": "POST /automation/run to run all engines"}


@router.post("/escalation", response_model=SweepResponse)
def run_escalation(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    result = EscalationEngine(db, notifier, policy).run()
    return {"actions": result.actions, "timestamp": result.timestamp}


@router.post("/batch", response_model=BatchSweepResponse)
def run_batching(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    weights: ScoringWeights = Depends(get_scoring_weights),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    result = BatchingEngine(db, notifier, weights, policy).run()
    return {"actions": result.actions, "timestamp": result.timestamp, "batches": result.batches}


@router.post("/preventive", response_model=PreventiveSweepResponse)
def run_preventive(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    result = PreventiveMaintenanceEngine(db, notifier, policy).run()
    return {"actions": result.actions, "timestamp": result.timestamp, "work_orders": result.work_orders}


@router.post("/run", response_model=AutomationRunResponse)
def run_all_engines(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    weights: ScoringWeights = Depends(get_scoring_weights),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    return run_all(db, notifier, weights, policy)
