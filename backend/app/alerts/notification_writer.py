"""
notification_writer.py — Idempotent per-user notification records.

    prepare_notification(store, alert, user_id) → PreparedNotification

The record lives at
``users/{userId}/notifications/{eventId}-{episodeId}-{userId}``. If it
already exists the result is SKIPPED with no record, so a retried
poll cycle, or the poller and the location reactor both reaching the
same user, never produce a second copy. Otherwise the record is built
and returned as SAVE; the caller stages it into a batch so one alert's
notifications commit together.

Batches stage records with create-if-absent semantics, so a record
prepared twice by overlapping invocations is still written once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from backend.app.alerts.models import (
    AlertRecord,
    AlertSummary,
    NotificationStatus,
    PreparedNotification,
    UserNotificationRecord,
    notification_doc_id,
)
from backend.app.store import DocumentStore, WriteBatch, notifications_path

logger = logging.getLogger(__name__)


def format_notification(
    alert: AlertRecord,
    *,
    now: Optional[datetime] = None,
) -> UserNotificationRecord:
    """Build the inbox record for one alert (user-independent)."""
    return UserNotificationRecord(
        title=f"{alert.alertlevel} Alert",
        description=alert.htmldescription or alert.description,
        icon=alert.icon,
        is_read=False,
        timestamp=now or datetime.now(timezone.utc),
        data=AlertSummary.from_alert(alert),
    )


async def prepare_notification(
    store: DocumentStore,
    alert: AlertRecord,
    user_id: str,
) -> PreparedNotification:
    """
    Check for an existing notification and build one if absent.

    Returns
    -------
    PreparedNotification
        ``status=SAVE`` with a record, or ``status=SKIPPED`` with none.
    """
    key = notification_doc_id(alert.eventid, alert.episodeid, user_id)

    if await store.exists(notifications_path(user_id), key):
        return PreparedNotification(
            key=key, user_id=user_id, status=NotificationStatus.SKIPPED,
        )

    return PreparedNotification(
        key=key,
        user_id=user_id,
        status=NotificationStatus.SAVE,
        record=format_notification(alert),
    )


def stage_notification(batch: WriteBatch, prepared: PreparedNotification) -> bool:
    """Add a SAVE notification to ``batch``; returns True if staged."""
    if prepared.status != NotificationStatus.SAVE or prepared.record is None:
        return False
    batch.create(
        notifications_path(prepared.user_id),
        prepared.key,
        prepared.record.to_dict(),
    )
    return True
