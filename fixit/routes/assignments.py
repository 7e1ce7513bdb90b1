"""
Assignment creation (scored or manual) and the technician-facing status updates.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, selectinload

from ..config import ScoringWeights
from ..db import get_db
from ..dependencies import get_notifier, get_scoring_weights
from ..models.models import Assignment, Technician
from ..schemas.dispatch import (
    AssignmentDetailResponse,
    AssignmentResponse,
    AssignmentStatus,
    AssignmentStatusUpdate,
    AssignRequest,
    AssignResponse,
)
from ..services.assignment import AssignmentResolver
from ..services.lifecycle import update_assignment_status
from ..services.notifications import Notifier


router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("", response_model=AssignResponse)
def assign(
    payload: AssignRequest,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    weights: ScoringWeights = Depends(get_scoring_weights),
):
    """
    Assign a report. Without technician_id the best-scoring available technician is chosen;
    with it the technician is bound directly.
    """
    resolver = AssignmentResolver(db, notifier, weights)
    if payload.technician_id:
        result = resolver.assign_to(
            payload.report_id,
            payload.technician_id,
            assigned_by=(payload.assigned_by.value if payload.assigned_by else "manager"),
            notes=payload.notes,
        )
    else:
        result = resolver.assign(
            payload.report_id,
            assigned_by=(payload.assigned_by.value if payload.assigned_by else "ai"),
        )
    db.refresh(result.assignment)
    return {
        "assignment": result.assignment,
        "technician": result.technician,
        "score": result.score,
        "all_scores": result.all_scores,
    }


@router.get("", response_model=List[AssignmentDetailResponse])
def list_assignments(
    technician_id: Optional[uuid.UUID] = None,
    technician_email: Optional[str] = None,
    status: Optional[AssignmentStatus] = None,
    db: Session = Depends(get_db),
):
    query = db.query(Assignment).options(
        selectinload(Assignment.report),
        selectinload(Assignment.technician),
    )
    if technician_id:
        query = query.filter(Assignment.technician_id == technician_id)
    elif technician_email:
        query = query.join(Technician).filter(Technician.email == technician_email.strip().lower())
    if status:
        query = query.filter(Assignment.status == status.value)
    return query.order_by(Assignment.created_at.desc()).all()


@router.patch("/{assignment_id}", response_model=AssignmentResponse)
def update_status(
    assignment_id: uuid.UUID,
    payload: AssignmentStatusUpdate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Advance an assignment; out-of-order transitions are rejected."""
    assignment = update_assignment_status(
        db,
        assignment_id,
        payload.status.value,
        notifier,
        completion_notes=payload.completion_notes,
        completion_photo_url=payload.completion_photo_url,
    )
    db.refresh(assignment)
    return assignment
