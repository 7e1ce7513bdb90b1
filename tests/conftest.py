# tests/conftest.py
"""
Shared fixtures: an in-memory database per test, recording notifiers,
row factories and an API client wired to the same session.
"""
import os

# Settings are read at import time; keep tests off the local database and SMTP
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ["RATE_LIMIT"] = "10000/minute"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fixit.config import DispatchPolicy, ScoringWeights
from fixit.db import Base, get_db
from fixit.dependencies import get_notifier
from fixit.main import app
from fixit.models.models import Assignment, Report, Technician
from fixit.services.errors import NotificationFailure
from fixit.services.notifications import Notifier


NOW = datetime(2025, 3, 10, 14, 0, 0)


# ============================================================
# NOTIFIERS
# ============================================================

class RecordingNotifier(Notifier):
    """Keeps every outbound message in memory instead of sending it"""

    def __init__(self):
        self.sent = []

    def of(self, channel):
        return [entry for entry in self.sent if entry[0] == channel]

    def notify_technician(self, technician, report, kind, details=None):
        self.sent.append(("technician", technician.email, report.id, kind, details or {}))
        return True

    def notify_manager(self, subject, lines):
        self.sent.append(("manager", subject, list(lines)))
        return True

    def notify_reporter(self, report, new_status, details=None):
        if not report.reporter_email:
            return False
        self.sent.append(("reporter", report.reporter_email, report.id, new_status))
        return True

    def notify_department(self, report):
        self.sent.append(("department", report.trade, report.id))
        return True


class FailingNotifier(Notifier):
    """Every channel is down"""

    def notify_technician(self, technician, report, kind, details=None):
        raise NotificationFailure("SMTP unreachable")

    def notify_manager(self, subject, lines):
        raise NotificationFailure("SMTP unreachable")

    def notify_reporter(self, report, new_status, details=None):
        raise NotificationFailure("SMTP unreachable")

    def notify_department(self, report):
        raise NotificationFailure("SMTP unreachable")


# ============================================================
# DATABASE
# ============================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def weights():
    return ScoringWeights()


@pytest.fixture
def policy():
    return DispatchPolicy()


# ============================================================
# FACTORIES
# ============================================================

@pytest.fixture
def make_technician(db):
    counter = {"n": 0}

    def _make(name=None, trade="hvac", buildings=None, is_available=True, email=None):
        counter["n"] += 1
        name = name or f"Tech {counter['n']:02d}"
        technician = Technician(
            name=name,
            email=email or f"tech{counter['n']}@facilities.udel.edu",
            trade=trade,
            assigned_buildings=list(buildings or []),
            is_available=is_available,
        )
        db.add(technician)
        db.commit()
        return technician

    return _make


@pytest.fixture
def make_report(db, policy):
    def _make(building="Gore Hall", trade="hvac", priority="medium", created_at=None, status="dispatched",
              floor="1", room="101", safety_concern=False, upvote_count=1, duplicate_of=None,
              reporter_email=None, **extra):
        report = Report(
            building=building,
            room=room,
            floor=floor,
            description=f"{trade} issue",
            trade=trade,
            priority=priority,
            ai_description=f"{trade} issue in {building}",
            suggested_action="Inspect",
            safety_concern=safety_concern,
            status=status,
            upvote_count=upvote_count,
            urgency_score=policy.priority_base_scores[priority] + upvote_count * policy.upvote_weight,
            duplicate_of=duplicate_of,
            reporter_email=reporter_email,
            created_at=created_at or NOW,
            **extra,
        )
        db.add(report)
        db.commit()
        return report

    return _make


@pytest.fixture
def make_assignment(db):
    def _make(report, technician, status="pending", created_at=None, started_at=None, assigned_by="ai"):
        assignment = Assignment(
            report_id=report.id,
            technician_id=technician.id,
            assigned_by=assigned_by,
            status=status,
            created_at=created_at or NOW,
            started_at=started_at,
        )
        db.add(assignment)
        db.commit()
        return assignment

    return _make


def minutes_before(minutes, now=NOW):
    return now - timedelta(minutes=minutes)


def active_assignments(db, report):
    return (
        db.query(Assignment)
        .filter(
            Assignment.report_id == report.id,
            Assignment.status.in_(("pending", "accepted", "in_progress")),
        )
        .all()
    )


# ============================================================
# API CLIENT
# ============================================================

@pytest.fixture
def client(db, notifier):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
