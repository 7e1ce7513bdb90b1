"""
Technician roster endpoints.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.dispatch import TechnicianCreate, TechnicianResponse, TechnicianUpdate, Trade
from ..services import technicians as roster


router = APIRouter(prefix="/technicians", tags=["technicians"])


@router.get("", response_model=List[TechnicianResponse])
def list_technicians(
    available: Optional[bool] = None,
    trade: Optional[Trade] = None,
    db: Session = Depends(get_db),
):
    return roster.list_technicians(db, available=available, trade=trade.value if trade else None)


@router.post("", response_model=TechnicianResponse)
def create_technician(payload: TechnicianCreate, db: Session = Depends(get_db)):
    return roster.create_technician(db, payload)


@router.patch("/{technician_id}", response_model=TechnicianResponse)
def update_technician(technician_id: uuid.UUID, payload: TechnicianUpdate, db: Session = Depends(get_db)):
    return roster.update_technician(db, technician_id, payload)


@router.delete("/{technician_id}")
def delete_technician(technician_id: uuid.UUID, db: Session = Depends(get_db)):
    roster.delete_technician(db, technician_id)
    return {"success": True}
