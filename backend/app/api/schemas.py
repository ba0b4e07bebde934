"""
Pydantic schemas for the jobs and users API.

Separated from the route handlers so they are reusable across
the codebase (route handlers, tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationUpdate(BaseModel):
    """
    New location reported by the app.

    Only the country code decides which alerts reach the user; the
    coordinates are stored for display.
    """
    country_code: str = Field(
        ..., min_length=2, max_length=2,
        description="ISO 3166-1 alpha-2 country code",
        examples=["PH"],
    )
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, examples=[14.5995])
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, examples=[120.9842])

    @field_validator("country_code")
    @classmethod
    def _upper_alpha(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("country_code must be two letters")
        return v.upper()


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class JobRunResponse(BaseModel):
    run_id: str
    job_type: str
    status: str
    trigger: str
    started_at: str
    completed_at: Optional[str] = None
    elapsed_seconds: float
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class JobListResponse(BaseModel):
    count: int
    runs: List[JobRunResponse]


class LocationChangeResponse(BaseModel):
    user_id: str
    previous_country_code: Optional[str] = None
    country_code: str
    country_changed: bool
    catch_up: Optional[Dict[str, Any]] = Field(
        None, description="Ongoing-alert notifications sent after a country change",
    )


class NotificationItem(BaseModel):
    id: str
    title: str
    description: str = ""
    is_read: bool = False
    icon: Optional[str] = None
    timestamp: Optional[datetime] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class NotificationListResponse(BaseModel):
    user_id: str
    count: int
    notifications: List[NotificationItem]
