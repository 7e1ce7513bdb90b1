import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class Trade(str, Enum):
    plumbing = "plumbing"
    electrical = "electrical"
    hvac = "hvac"
    structural = "structural"
    custodial = "custodial"
    landscaping = "landscaping"
    safety_hazard = "safety_hazard"


class Priority(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class ReportStatus(str, Enum):
    submitted = "submitted"
    analyzing = "analyzing"
    dispatched = "dispatched"
    in_progress = "in_progress"
    resolved = "resolved"


class AssignmentStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class AssignedBy(str, Enum):
    ai = "ai"
    manager = "manager"
    batch_engine = "batch_engine"
    escalation_engine = "escalation_engine"
    preventive_maintenance_engine = "preventive_maintenance_engine"


class ReportSource(str, Enum):
    app = "app"
    email = "email"
    preventive = "preventive"


# Report intake
class AIAnalysis(BaseModel):
    trade: Trade
    priority: Priority = Priority.medium
    description: str = ""
    suggested_action: str = ""
    safety_concern: bool = False
    estimated_cost: Optional[str] = None
    estimated_time: Optional[str] = None
    confidence_score: Optional[float] = Field(default=None, ge=0, le=1)


class ReportDraft(BaseModel):
    building: Optional[str] = None
    room: str = ""
    floor: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: str = ""
    photo_url: Optional[str] = None
    reporter_email: Optional[str] = None
    reporter_name: Optional[str] = None
    source: ReportSource = ReportSource.app
    ai_analysis: AIAnalysis

    @field_validator('building', 'reporter_email', 'reporter_name', 'photo_url', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    @field_validator('room', 'floor', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v).strip()


class ReportResponse(BaseModel):
    id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    building: str
    room: str
    floor: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: str
    photo_url: Optional[str] = None
    trade: Trade
    priority: Priority
    ai_description: str
    suggested_action: str
    safety_concern: bool
    estimated_cost: Optional[str] = None
    estimated_time: Optional[str] = None
    confidence_score: Optional[float] = None
    status: ReportStatus
    urgency_score: float
    upvote_count: int
    duplicate_of: Optional[uuid.UUID] = None
    dispatched_at: Optional[datetime] = None
    email_sent: bool
    reporter_email: Optional[str] = None
    reporter_name: Optional[str] = None
    source: str
    generated_by: Optional[str] = None
    pattern_trade: Optional[str] = None

    class Config:
        from_attributes = True


class IntakeResponse(BaseModel):
    report: ReportResponse
    duplicated: bool
    original_id: Optional[uuid.UUID] = None
    assignment_id: Optional[uuid.UUID] = None


class PreventiveAlert(BaseModel):
    trade: Trade
    count: int
    message: str


class ReportListResponse(BaseModel):
    reports: List[ReportResponse]
    preventive_alerts: List[PreventiveAlert]


# Technicians
class TechnicianBase(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    trade: Trade
    assigned_buildings: List[str] = Field(default_factory=list)
    is_available: bool = True


class TechnicianCreate(TechnicianBase):
    pass


class TechnicianUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    trade: Optional[Trade] = None
    assigned_buildings: Optional[List[str]] = None
    is_available: Optional[bool] = None


class TechnicianResponse(TechnicianBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator('assigned_buildings', mode='before')
    @classmethod
    def none_to_list(cls, v):
        return v or []

    class Config:
        from_attributes = True


# Assignments
class AssignRequest(BaseModel):
    report_id: uuid.UUID
    technician_id: Optional[uuid.UUID] = None
    assigned_by: Optional[AssignedBy] = None
    notes: Optional[str] = None


class AssignmentStatusUpdate(BaseModel):
    status: AssignmentStatus
    completion_notes: Optional[str] = None
    completion_photo_url: Optional[str] = None


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    report_id: uuid.UUID
    technician_id: uuid.UUID
    assigned_by: AssignedBy
    status: AssignmentStatus
    notes: Optional[str] = None
    completion_notes: Optional[str] = None
    completion_photo_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssignmentDetailResponse(AssignmentResponse):
    report: Optional[ReportResponse] = None
    technician: Optional[TechnicianResponse] = None


class AuditEntryResponse(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor: Optional[str] = None
    source: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    timestamp_utc: datetime
    verified: bool = False

    class Config:
        from_attributes = True


class AssignResponse(BaseModel):
    assignment: AssignmentResponse
    technician: TechnicianResponse
    score: Optional[float] = None
    all_scores: List[Dict[str, Any]] = Field(default_factory=list)


# Sweeps
class SweepResponse(BaseModel):
    success: bool = True
    actions: List[str]
    timestamp: datetime


class BatchSummary(BaseModel):
    building: str
    trade: Trade
    report_count: int
    technician_id: uuid.UUID
    technician_name: str
    route: List[str]


class BatchSweepResponse(SweepResponse):
    batches: List[BatchSummary]


class WorkOrderSummary(BaseModel):
    report_id: uuid.UUID
    trade: Trade
    count: int
    buildings: List[str]
    technician_id: Optional[uuid.UUID] = None


class PreventiveSweepResponse(SweepResponse):
    work_orders: List[WorkOrderSummary]


class AutomationRunResponse(BaseModel):
    success: bool = True
    timestamp: datetime
    engines: Dict[str, Any]
