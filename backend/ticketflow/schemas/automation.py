"""Batch automation request and per-component summaries."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class AutomationRunRequest(BaseModel):
    """Body of the batch entry point. Out-of-range limits are clamped, not rejected."""
    limit: int = 200
    run_directory_sync: bool = False

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value: Any) -> int:
        try:
            n = int(float(value))
        except (TypeError, ValueError):
            return 200
        except OverflowError:
            return 500 if float(value) > 0 else 1
        return max(1, min(500, n))

    @field_validator("run_directory_sync", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        return bool(value)


class SlaScanSummary(BaseModel):
    scanned: int = 0
    first_response_breaches: int = Field(0, serialization_alias="firstBreaches")
    resolution_breaches: int = Field(0, serialization_alias="resolutionBreaches")
    failed: int = 0


class EscalationSeedSummary(BaseModel):
    scanned: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0


class EscalationAdvanceSummary(BaseModel):
    scanned: int = 0
    advanced: int = 0
    rearmed: int = 0
    completed: int = 0
    notified: int = 0
    notify_failed: int = Field(0, serialization_alias="notifyFailed")
    failed: int = 0


class AutoCloseSummary(BaseModel):
    scanned: int = 0
    cutoff: datetime
    closed: int = 0
    skipped: int = 0
    emailed: int = 0
    email_skipped: int = Field(0, serialization_alias="emailSkipped")
    email_failed: int = Field(0, serialization_alias="emailFailed")
    failed: int = 0


class AutomationRunResponse(BaseModel):
    success: bool = True
    at: datetime
    limit: int
    sla_breaches: SlaScanSummary = Field(serialization_alias="slaBreaches")
    escalation_seeds: EscalationSeedSummary = Field(serialization_alias="escalationSeeds")
    escalation_advances: EscalationAdvanceSummary = Field(serialization_alias="escalationAdvances")
    auto_close_resolved: AutoCloseSummary = Field(serialization_alias="autoCloseResolved")
    auto_close_pending: AutoCloseSummary = Field(serialization_alias="autoClosePending")
    directory_sync: Optional[Any] = Field(None, serialization_alias="directorySync")
