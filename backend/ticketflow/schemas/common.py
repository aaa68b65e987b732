"""Common response schemas."""

from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str = "1.0.0"
    db: str
    redis: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[str] = None
