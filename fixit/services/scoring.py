"""
Technician fitness scoring.
Pure scoring over already-fetched rows, plus the two queries the scorers need.
"""
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import ScoringWeights
from ..models.models import Assignment, Technician, ACTIVE_ASSIGNMENT_STATUSES


@dataclass
class ScoredTechnician:
    technician: Technician
    score: int
    load: int


def score_technician(
    technician: Technician,
    building: str,
    trade: str,
    active_load: int,
    weights: ScoringWeights,
) -> int:
    """
    Fitness of a technician for work at (building, trade). Higher is better.

    Args:
        technician: Candidate technician
        building: Building of the report or batch group
        trade: Trade of the report or batch group
        active_load: Technician's count of pending/accepted/in_progress assignments
        weights: Scoring weights

    Returns:
        Non-negative additive score
    """
    score = 0
    if technician.is_available:
        score += weights.available
    if building in (technician.assigned_buildings or []):
        score += weights.building_match
    if technician.trade == trade:
        score += weights.trade_match
    if active_load < weights.max_active_assignments:
        score += (weights.max_active_assignments - active_load) * weights.low_workload_bonus
    return score


def rank_technicians(
    technicians: Sequence[Technician],
    building: str,
    trade: str,
    loads: Dict[uuid.UUID, int],
    weights: ScoringWeights,
) -> List[ScoredTechnician]:
    """Score every candidate and sort descending; ties keep input order."""
    scored = [
        ScoredTechnician(tech, score_technician(tech, building, trade, loads.get(tech.id, 0), weights), loads.get(tech.id, 0))
        for tech in technicians
    ]
    return sorted(scored, key=lambda s: -s.score)


def pick_least_loaded(technicians: Sequence[Technician], loads: Dict[uuid.UUID, int]) -> Optional[Technician]:
    """Technician with the fewest active assignments; ties keep input order."""
    best = None
    for tech in technicians:
        if best is None or loads.get(tech.id, 0) < loads.get(best.id, 0):
            best = tech
    return best


def available_technicians(
    db: Session,
    trade: Optional[str] = None,
    exclude_ids: Iterable[uuid.UUID] = (),
) -> List[Technician]:
    """Available technicians in evaluation order (by name, then id)."""
    query = db.query(Technician).filter(Technician.is_available.is_(True))
    if trade:
        query = query.filter(Technician.trade == trade)
    exclude_ids = list(exclude_ids)
    if exclude_ids:
        query = query.filter(Technician.id.notin_(exclude_ids))
    return query.order_by(Technician.name, Technician.id).all()


def active_assignment_counts(db: Session, technician_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
    technician_ids = list(technician_ids)
    if not technician_ids:
        return {}
    rows = (
        db.query(Assignment.technician_id, func.count(Assignment.id))
        .filter(
            Assignment.technician_id.in_(technician_ids),
            Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        )
        .group_by(Assignment.technician_id)
        .all()
    )
    return {technician_id: count for technician_id, count in rows}
