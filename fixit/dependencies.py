"""
FastAPI dependencies that build the dispatch services for one request.
Override these in tests to swap the notifier or policy.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from .config import DispatchPolicy, ScoringWeights, settings
from .db import get_db
from .services.notifications import EmailNotifier, Notifier


def get_scoring_weights() -> ScoringWeights:
    return settings.scoring_weights()


def get_dispatch_policy() -> DispatchPolicy:
    return settings.dispatch_policy()


def get_notifier(db: Session = Depends(get_db)) -> Notifier:
    return EmailNotifier(db, settings)
