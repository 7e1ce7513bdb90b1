"""
Dispatch audit trail.
Every state change the core makes (report intake, assignment, transition, cancellation,
roster edits) appends one row. Rows carry a keyed SHA256 over their canonical content so
edits made outside the service can be detected.
"""
import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.models import Assignment, AuditLog
from ..config import settings
from .time_rules import as_naive_utc


def _jsonable(value: Optional[Dict]) -> Optional[Dict]:
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def integrity_hash(fields: Dict[str, Any], secret: str) -> str:
    """Keyed hash of the non-empty fields, serialized with sorted keys."""
    canonical = json.dumps({k: v for k, v in fields.items() if v is not None}, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical}:{secret}".encode()).hexdigest()


def _hashed_fields(entry: AuditLog) -> Dict[str, Any]:
    return {
        "entity_type": entry.entity_type,
        "entity_id": str(entry.entity_id),
        "action": entry.action,
        "actor": entry.actor,
        "source": entry.source,
        "timestamp_utc": as_naive_utc(entry.timestamp_utc).isoformat(),
        "changes": entry.changes_json,
        "context": entry.context,
    }


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Append an audit entry to the caller's transaction (flushed, not committed).

    Args:
        db: Database session
        entity_type: report|assignment|technician
        entity_id: Entity ID
        action: CREATE|DEDUPLICATE|ASSIGN|STATUS|CANCEL|UPDATE|DELETE|RETIRE
        actor: ai|manager|technician|<engine name>|reporter email
        source: api|sweep|system
        changes_json: Before/after values
        context: Extra facts such as report_id, notes or pattern counts
        integrity_secret: Hash key, AUDIT_SECRET when omitted; no hash when empty
    """
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=actor,
        source=source or "system",
        changes_json=_jsonable(changes_json),
        timestamp_utc=datetime.utcnow(),
        context=_jsonable(context),
    )
    secret = settings.audit_secret if integrity_secret is None else integrity_secret
    if secret:
        entry.integrity_hash = integrity_hash(_hashed_fields(entry), secret)
    db.add(entry)
    db.flush()
    return entry


def verify_entry(entry: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """True when the stored hash still matches the row's content."""
    secret = settings.audit_secret if integrity_secret is None else integrity_secret
    if not secret or not entry.integrity_hash:
        return False
    return integrity_hash(_hashed_fields(entry), secret) == entry.integrity_hash


def report_history(db: Session, report_id, limit: int = 200) -> List[AuditLog]:
    """Audit entries for a report and for every assignment ever made on it, oldest first."""
    assignment_ids: Sequence = [
        row.id for row in db.query(Assignment.id).filter(Assignment.report_id == report_id).all()
    ]
    conditions = [(AuditLog.entity_type == "report") & (AuditLog.entity_id == report_id)]
    if assignment_ids:
        conditions.append((AuditLog.entity_type == "assignment") & (AuditLog.entity_id.in_(assignment_ids)))
    return (
        db.query(AuditLog)
        .filter(or_(*conditions))
        .order_by(AuditLog.timestamp_utc.asc())
        .limit(limit)
        .all()
    )


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Changed keys only, as {key: {"before": ..., "after": ...}}."""
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in set(before) | set(after)
        if before.get(key) != after.get(key)
    }
