"""
Report intake, listing and audit history.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import DispatchPolicy, ScoringWeights
from ..db import get_db
from ..dependencies import get_dispatch_policy, get_notifier, get_scoring_weights
from ..models.models import Report
from ..schemas.dispatch import (
    AuditEntryResponse,
    IntakeResponse,
    ReportDraft,
    ReportListResponse,
    ReportResponse,
    ReportStatus,
    Trade,
)
from ..services.assignment import get_report
from ..services.audit import report_history, verify_entry
from ..services.intake import IntakeService
from ..services.notifications import Notifier
from ..services.preventive import preventive_alerts
from ..services.time_rules import utcnow


router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=IntakeResponse)
def submit_report(
    draft: ReportDraft,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    weights: ScoringWeights = Depends(get_scoring_weights),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    """
    Intake a normalized report draft.
    Duplicates upvote the open original; unique reports are dispatched and auto-assigned.
    """
    result = IntakeService(db, notifier, weights, policy).intake(draft)
    db.refresh(result.report)
    return {
        "report": result.report,
        "duplicated": result.duplicated,
        "original_id": result.original_id,
        "assignment_id": result.assignment.id if result.assignment else None,
    }


@router.get("", response_model=ReportListResponse)
def list_reports(
    status: Optional[ReportStatus] = None,
    trade: Optional[Trade] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    policy: DispatchPolicy = Depends(get_dispatch_policy),
):
    query = db.query(Report)
    if status:
        query = query.filter(Report.status == status.value)
    if trade:
        query = query.filter(Report.trade == trade.value)
    reports = query.order_by(Report.urgency_score.desc(), Report.created_at.desc()).limit(limit).all()
    return {
        "reports": reports,
        "preventive_alerts": preventive_alerts(db, utcnow(), policy),
    }


@router.get("/{report_id}", response_model=ReportResponse)
def read_report(report_id: uuid.UUID, db: Session = Depends(get_db)):
    return get_report(db, report_id)


@router.get("/{report_id}/history", response_model=List[AuditEntryResponse])
def report_audit_history(report_id: uuid.UUID, db: Session = Depends(get_db)):
    get_report(db, report_id)
    entries = []
    for entry in report_history(db, report_id):
        item = AuditEntryResponse.model_validate(entry)
        item.verified = verify_entry(entry)
        entries.append(item)
    return entries
