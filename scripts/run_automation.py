"""
Run the dispatch sweeps once, for cron or manual use.

Usage:
    python scripts/run_automation.py [--engine escalation|batch|preventive|all]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fixit.config import settings
from fixit.db import SessionLocal
from fixit.logging import setup_logging
from fixit.services.automation import run_all
from fixit.services.batching import BatchingEngine
from fixit.services.escalation import EscalationEngine
from fixit.services.errors import DispatchError
from fixit.services.notifications import EmailNotifier
from fixit.services.preventive import PreventiveMaintenanceEngine


def run(engine: str) -> int:
    db = SessionLocal()
    notifier = EmailNotifier(db, settings)
    weights = settings.scoring_weights()
    policy = settings.dispatch_policy()
    try:
        if engine == "all":
            summary = run_all(db, notifier, weights, policy)
            failed = 0
            for name, outcome in summary["engines"].items():
                if not outcome["success"]:
                    failed += 1
                    print(f"[{name}] FAILED: {outcome['error']['message']}")
                    continue
                print(f"[{name}] {len(outcome['actions'])} action(s)")
                for action in outcome["actions"]:
                    print(f"  - {action}")
            return 1 if failed else 0

        if engine == "escalation":
            result = EscalationEngine(db, notifier, policy).run()
        elif engine == "batch":
            result = BatchingEngine(db, notifier, weights, policy).run()
        else:
            result = PreventiveMaintenanceEngine(db, notifier, policy).run()
        print(f"[{engine}] {len(result.actions)} action(s)")
        for action in result.actions:
            print(f"  - {action}")
        return 0
    except DispatchError as e:
        db.rollback()
        print(f"[ERROR] {engine} failed: {e.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run FixIt dispatch sweeps once")
    parser.add_argument(
        "--engine",
        choices=["escalation", "batch", "preventive", "all"],
        default="all",
        help="Which sweep to run (default: all)",
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(run(args.engine))
