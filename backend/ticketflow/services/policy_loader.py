"""Load escalation policies from YAML reference data."""

import uuid
from typing import Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from ticketflow.models.escalation import EscalationPolicy, EscalationStep

logger = structlog.get_logger()


class StepSpec(BaseModel):
    step_order: int = Field(ge=1)
    delay_minutes: int = Field(0, ge=0)
    notify_user_id: Optional[uuid.UUID] = None
    notify_group_id: Optional[uuid.UUID] = None
    notify_channel: str = "email"


class PolicySpec(BaseModel):
    name: str
    is_active: bool = True
    priority: int = 100
    match_ticket_type: Optional[str] = None
    match_assignment_group_id: Optional[uuid.UUID] = None
    steps: list[StepSpec] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def _unique_orders(cls, steps: list[StepSpec]) -> list[StepSpec]:
        orders = [s.step_order for s in steps]
        if len(orders) != len(set(orders)):
            raise ValueError("step_order values must be unique within a policy")
        return sorted(steps, key=lambda s: s.step_order)


def parse_policies(text: str) -> list[PolicySpec]:
    data = yaml.safe_load(text) or {}
    return [PolicySpec.model_validate(p) for p in data.get("policies", [])]


def upsert_policies(session: Session, specs: list[PolicySpec]) -> dict:
    """Create or update policies by name, and their steps by order. Commits once."""
    counts = {"created": 0, "updated": 0, "steps": 0}
    for spec in specs:
        policy = session.execute(
            select(EscalationPolicy).where(EscalationPolicy.name == spec.name)
        ).scalar_one_or_none()
        if policy is None:
            policy = EscalationPolicy(name=spec.name)
            session.add(policy)
            counts["created"] += 1
        else:
            counts["updated"] += 1

        policy.is_active = spec.is_active
        policy.priority = spec.priority
        policy.match_ticket_type = spec.match_ticket_type
        policy.match_assignment_group_id = spec.match_assignment_group_id
        session.flush()

        existing = {
            s.step_order: s
            for s in session.execute(
                select(EscalationStep).where(EscalationStep.policy_id == policy.id)
            ).scalars()
        }
        for step_spec in spec.steps:
            step = existing.get(step_spec.step_order)
            if step is None:
                step = EscalationStep(policy_id=policy.id, step_order=step_spec.step_order)
                session.add(step)
            step.delay_minutes = step_spec.delay_minutes
            step.notify_user_id = step_spec.notify_user_id
            step.notify_group_id = step_spec.notify_group_id
            step.notify_channel = step_spec.notify_channel
            counts["steps"] += 1

    session.commit()
    logger.info("escalation_policies_loaded", **counts)
    return counts
