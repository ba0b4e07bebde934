"""
FastAPI route: user profile hooks.

Provides endpoints to:
    PUT /api/v1/users/{user_id}/location       — store a new location
    GET /api/v1/users/{user_id}/notifications  — inbox, newest first

Writing a location with a different country triggers the catch-up
notifications for disasters already ongoing there.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import AlertService
from backend.app.alerts.models import UserLocation, parse_instant
from backend.app.api.dependencies import get_alert_service, get_store
from backend.app.api.schemas import (
    LocationChangeResponse,
    LocationUpdate,
    NotificationListResponse,
)
from backend.app.core.errors import NotFoundError
from backend.app.store import USERS, DocumentStore, notifications_path

router = APIRouter(prefix="/api/v1/users", tags=["users"])

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_instant(value) -> datetime:
    try:
        return parse_instant(value)
    except ValueError:
        return _EPOCH


@router.put(
    "/{user_id}/location",
    response_model=LocationChangeResponse,
    summary="Update a user's location",
)
async def update_location(
    user_id: str,
    body: LocationUpdate,
    store: DocumentStore = Depends(get_store),
    service: AlertService = Depends(get_alert_service),
):
    before = await store.get(USERS, user_id)
    if before is None:
        raise NotFoundError("User", user_id=user_id)

    location = UserLocation(
        country_code=body.country_code,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    await store.set(USERS, user_id, {"location": location.to_dict()}, merge=True)
    after = await store.get(USERS, user_id)

    result = await service.on_user_location_change(user_id, before, after)
    previous = UserLocation.from_dict(before.get("location")).country_code

    return {
        "user_id": user_id,
        "previous_country_code": previous,
        "country_code": location.country_code,
        "country_changed": result is not None,
        "catch_up": result.to_dict() if result else None,
    }


@router.get(
    "/{user_id}/notifications",
    response_model=NotificationListResponse,
    summary="List a user's notifications",
)
async def list_notifications(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    store: DocumentStore = Depends(get_store),
):
    if not await store.exists(USERS, user_id):
        raise NotFoundError("User", user_id=user_id)

    docs = await store.list(notifications_path(user_id))
    docs.sort(key=lambda d: _sort_instant(d.data.get("timestamp")), reverse=True)

    items = [
        {
            "id": doc.id,
            "title": doc.data.get("title", ""),
            "description": doc.data.get("description") or "",
            "is_read": bool(doc.data.get("isRead", False)),
            "icon": doc.data.get("icon"),
            "timestamp": doc.data.get("timestamp"),
            "data": doc.data.get("data") or {},
        }
        for doc in docs[:limit]
    ]
    return {"user_id": user_id, "count": len(items), "notifications": items}
