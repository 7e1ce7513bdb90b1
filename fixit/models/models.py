import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


ACTIVE_ASSIGNMENT_STATUSES = ("pending", "accepted", "in_progress")

_ACTIVE_ASSIGNMENT_CLAUSE = text("status IN ('pending', 'accepted', 'in_progress')")


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Technician(Base):
    """Maintenance worker who can be dispatched to reports"""
    __tablename__ = "technicians"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    trade: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # plumbing|electrical|hvac|structural|custodial|landscaping|safety_hazard
    assigned_buildings: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # List of building names
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    assignments = relationship("Assignment", back_populates="technician")


class Report(Base):
    """Maintenance issue reported on campus"""
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = uuid_pk()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Location
    building: Mapped[str] = mapped_column(String(255), nullable=False)
    room: Mapped[str] = mapped_column(String(50), default="")
    floor: Mapped[str] = mapped_column(String(20), default="")
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    # Issue details
    description: Mapped[str] = mapped_column(Text, default="")
    photo_url: Mapped[Optional[str]] = mapped_column(String(1024))

    # Classification (produced upstream by the intake collaborator)
    trade: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")  # critical|high|medium|low
    ai_description: Mapped[str] = mapped_column(Text, default="")
    suggested_action: Mapped[str] = mapped_column(Text, default="")
    safety_concern: Mapped[bool] = mapped_column(Boolean, default=False)
    estimated_cost: Mapped[Optional[str]] = mapped_column(String(50))
    estimated_time: Mapped[Optional[str]] = mapped_column(String(50))
    confidence_score: Mapped[Optional[float]] = mapped_column(Float)

    # Status
    status: Mapped[str] = mapped_column(String(20), default="submitted", index=True)  # submitted|analyzing|dispatched|in_progress|resolved
    urgency_score: Mapped[float] = mapped_column(Float, default=0)
    upvote_count: Mapped[int] = mapped_column(Integer, default=0)
    duplicate_of: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("reports.id"), index=True)

    # Department dispatch
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)

    # Reporter
    reporter_email: Mapped[Optional[str]] = mapped_column(String(255))
    reporter_name: Mapped[Optional[str]] = mapped_column(String(255))
    source: Mapped[str] = mapped_column(String(20), default="app")  # app|email|preventive

    # Preventive work order marker
    generated_by: Mapped[Optional[str]] = mapped_column(String(50), index=True)  # preventive_maintenance_engine
    pattern_trade: Mapped[Optional[str]] = mapped_column(String(50))

    assignments = relationship("Assignment", back_populates="report", order_by="Assignment.created_at")

    __table_args__ = (
        Index('idx_reports_building_trade', 'building', 'trade', 'created_at'),
        Index('idx_reports_pattern', 'generated_by', 'pattern_trade', 'created_at'),
    )


class Assignment(Base):
    """One attempt by one technician at resolving one report"""
    __tablename__ = "assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    report_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("reports.id"), nullable=False, index=True)
    technician_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("technicians.id"), nullable=False, index=True)
    assigned_by: Mapped[str] = mapped_column(String(50), nullable=False, default="ai")  # ai|manager|batch_engine|escalation_engine|preventive_maintenance_engine
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending|accepted|in_progress|completed|cancelled
    notes: Mapped[Optional[str]] = mapped_column(Text)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    completion_photo_url: Mapped[Optional[str]] = mapped_column(String(1024))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    report = relationship("Report", back_populates="assignments")
    technician = relationship("Technician", back_populates="assignments")

    __table_args__ = (
        Index('idx_assignments_technician_status', 'technician_id', 'status'),
        Index('idx_assignments_status_created', 'status', 'created_at'),
        # At most one pending/accepted/in_progress assignment per report
        Index(
            'uq_assignments_active_report',
            'report_id',
            unique=True,
            sqlite_where=_ACTIVE_ASSIGNMENT_CLAUSE,
            postgresql_where=_ACTIVE_ASSIGNMENT_CLAUSE,
        ),
    )


class Notification(Base):
    """Outbox record of every message the dispatch core decided to send"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    audience: Mapped[str] = mapped_column(String(20), nullable=False)  # technician|manager|reporter|department
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="email")
    template_key: Mapped[Optional[str]] = mapped_column(String(100))
    subject: Mapped[Optional[str]] = mapped_column(String(255))
    body: Mapped[Optional[str]] = mapped_column(Text)
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|logged|failed
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index('idx_notifications_audience_created', 'audience', 'created_at'),
    )


class AuditLog(Base):
    """Append-only audit log for dispatch actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # report|assignment|technician
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|DEDUPLICATE|ASSIGN|STATUS|CANCEL|UPDATE|DELETE
    actor: Mapped[Optional[str]] = mapped_column(String(100))  # ai|manager|technician|<engine name>
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|sweep|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
