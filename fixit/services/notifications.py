"""
Notification service for technicians, managers, reporters and trade departments.
Delivery is best-effort: engines call through `deliver`, which never raises.
"""
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..models.models import Notification, Report, Technician
from .errors import NotificationFailure
from .time_rules import format_local


logger = structlog.get_logger(__name__)


def _trade_label(trade: str) -> str:
    return (trade or "").replace("_", " ")


class Notifier:
    """Outbound message collaborator. Methods return True on delivery and raise on failure."""

    def notify_technician(self, technician: Technician, report: Report, kind: str,
                          details: Optional[Dict[str, Any]] = None) -> bool:
        raise NotImplementedError

    def notify_manager(self, subject: str, lines: List[str]) -> bool:
        raise NotImplementedError

    def notify_reporter(self, report: Report, new_status: str,
                        details: Optional[Dict[str, Any]] = None) -> bool:
        raise NotImplementedError

    def notify_department(self, report: Report) -> bool:
        raise NotImplementedError


def deliver(send: Callable[..., bool], *args, event: str = "notification", **kwargs) -> bool:
    """
    Call a notifier method without letting its failure reach the caller.
    The state change that triggered the message is already committed and stays that way.

    Returns:
        True if the notifier reported delivery, False otherwise
    """
    try:
        return bool(send(*args, **kwargs))
    except Exception as e:
        logger.warning("notification_failed", notification=event, error=str(e))
        return False


class EmailNotifier(Notifier):
    """
    Composes messages, records them in the notifications outbox and sends them over SMTP
    when SMTP is configured. Without SMTP the message is recorded with status "logged".
    """

    def __init__(self, db: Session, config: Optional[Settings] = None):
        self.db = db
        self.config = config or default_settings

    # Public API

    def notify_technician(self, technician, report, kind, details=None):
        details = details or {}
        location = f"{report.building}, Floor {report.floor or '?'}, Room {report.room or '?'}"
        if kind == "batch":
            subject = f"[FixIt] Batched route: {details.get('count', 0)} {_trade_label(report.trade)} jobs in {report.building}"
            lines = [
                f"Hi {technician.name},",
                "",
                f"You have been assigned {details.get('count', 0)} {_trade_label(report.trade)} jobs in {report.building}.",
                f"Route: {details.get('route', '')}",
                "Complete all jobs in a single visit. Start from the lowest floor and work up.",
            ]
        elif kind == "preventive":
            subject = f"[FixIt] Preventive inspection: {_trade_label(report.trade)}"
            lines = [
                f"Hi {technician.name},",
                "",
                report.ai_description,
                f"Suggested action: {report.suggested_action}",
            ]
        else:
            subject = f"[FixIt] New {report.priority} {_trade_label(report.trade)} job: {location}"
            lines = [
                f"Hi {technician.name},",
                "",
                f"A {report.priority} priority {_trade_label(report.trade)} issue has been assigned to you.",
                f"Location: {location}",
                f"Issue: {report.ai_description or report.description}",
                f"Suggested action: {report.suggested_action or '-'}",
                f"Reported: {format_local(report.created_at, self.config.campus_timezone)}",
            ]
            if report.safety_concern:
                lines.append("SAFETY CONCERN: take appropriate precautions.")
            if kind == "reassignment":
                lines.append("This job was reassigned to you after the previous technician did not accept it.")
        return self._send(
            recipient=technician.email,
            audience="technician",
            template_key=f"technician_{kind}",
            subject=subject,
            body="\n".join(lines),
            payload={"report_id": str(report.id), "technician_id": str(technician.id), "kind": kind, **details},
        )

    def notify_manager(self, subject, lines):
        return self._send(
            recipient=self.config.manager_email,
            audience="manager",
            template_key="manager_alert",
            subject=f"[FixIt] {subject}",
            body="\n".join(lines),
            payload={"subject": subject, "line_count": len(lines)},
        )

    def notify_reporter(self, report, new_status, details=None):
        if not report.reporter_email:
            return False
        details = details or {}
        name = report.reporter_name or "there"
        lines = [
            f"Hi {name},",
            "",
            f"Your {_trade_label(report.trade)} report for {report.building} room {report.room or '?'} is now {new_status.replace('_', ' ')}.",
        ]
        if details.get("completion_notes"):
            lines.append(f"Technician notes: {details['completion_notes']}")
        return self._send(
            recipient=report.reporter_email,
            audience="reporter",
            template_key=f"reporter_{new_status}",
            subject=f"[FixIt] Your report is {new_status.replace('_', ' ')}",
            body="\n".join(lines),
            payload={"report_id": str(report.id), "status": new_status, **details},
        )

    def notify_department(self, report):
        recipient = self.config.department_emails.get(report.trade)
        if not recipient:
            raise NotificationFailure(f"No department mailbox configured for {report.trade}")
        lines = [
            f"New {report.priority} priority {_trade_label(report.trade)} report.",
            f"Location: {report.building}, Floor {report.floor or '?'}, Room {report.room or '?'}",
            f"Issue: {report.ai_description or report.description}",
            f"Suggested action: {report.suggested_action or '-'}",
            f"Urgency score: {report.urgency_score}",
        ]
        if report.safety_concern:
            lines.append("SAFETY CONCERN")
        return self._send(
            recipient=recipient,
            audience="department",
            template_key="department_dispatch",
            subject=f"[FixIt] {report.priority.upper()}: {_trade_label(report.trade)} issue at {report.building}",
            body="\n".join(lines),
            payload={"report_id": str(report.id), "trade": report.trade},
        )

    # Transport

    def _send(self, recipient: str, audience: str, template_key: str, subject: str,
              body: str, payload: Dict[str, Any]) -> bool:
        notification = Notification(
            recipient=recipient,
            audience=audience,
            channel="email",
            template_key=template_key,
            subject=subject,
            body=body,
            payload_json=payload,
            status="pending",
        )
        self.db.add(notification)

        if not self.config.enable_email or not (self.config.smtp_host and self.config.mail_from):
            notification.status = "logged"
            self.db.flush()
            logger.info("notification_logged", audience=audience, recipient=recipient, template=template_key)
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.config.mail_from
        msg["To"] = recipient
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as s:
                if self.config.smtp_tls:
                    s.starttls()
                if self.config.smtp_username and self.config.smtp_password:
                    s.login(self.config.smtp_username, self.config.smtp_password)
                s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            notification.status = "failed"
            notification.error_message = str(e)
            self.db.flush()
            raise NotificationFailure(f"Email to {recipient} failed: {e}") from e

        notification.status = "sent"
        notification.sent_at = datetime.utcnow()
        self.db.flush()
        return True
