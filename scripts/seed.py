#!/usr/bin/env python3
"""Seed escalation policies from samples/escalation_policies.yaml. Safe to re-run."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from pathlib import Path

from ticketflow.database import get_sync_session
from ticketflow.services.policy_loader import parse_policies, upsert_policies

SAMPLES_DIR = Path(__file__).parent.parent / "samples"


def seed(path: Path = SAMPLES_DIR / "escalation_policies.yaml"):
    specs = parse_policies(path.read_text())
    session = get_sync_session()
    try:
        counts = upsert_policies(session, specs)
    finally:
        session.close()
    print(f"Escalation policies: {counts['created']} created, {counts['updated']} updated, "
          f"{counts['steps']} steps")


if __name__ == "__main__":
    seed(Path(sys.argv[1]) if len(sys.argv) > 1 else SAMPLES_DIR / "escalation_policies.yaml")
