"""
location_reactor.py — Catch-up notifications after a user changes country.

A user who moves into a country that already has an ongoing disaster
would otherwise hear nothing until the next new episode is published.
When the country stored on their profile changes, this module scans the
stored alerts and notifies the user of every one that is:

    • ongoing today   fromdate ≤ today ≤ todate (UTC calendar days, inclusive)
    • relevant        the new country is among its affected countries

Notifications go through the same writer as the poller, so an alert the
user was already notified about is skipped, and push is sent only for
notifications created by this run.
A failed existence check for one alert is logged and counted; the other
alerts are still staged and committed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from backend.app.alerts.geo_fence import affects_country, get_user_push_tokens
from backend.app.alerts.models import (
    AlertRecord,
    BatchReceipt,
    ReactorResult,
    UserLocation,
)
from backend.app.alerts.notification_writer import (
    prepare_notification,
    stage_notification,
)
from backend.app.core.errors import StoreError
from backend.app.store import DISASTERS, DocumentStore

logger = logging.getLogger(__name__)

PushSender = Callable[[List[str], AlertRecord], Awaitable[List[BatchReceipt]]]


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_ongoing(alert: AlertRecord, today: date) -> bool:
    """True when ``today`` lies within the alert's validity window."""
    return alert.fromdate.date() <= today <= alert.todate.date()


def select_relevant_alerts(
    alerts: Sequence[AlertRecord],
    country_code: str,
    today: date,
) -> List[AlertRecord]:
    return [a for a in alerts if is_ongoing(a, today) and affects_country(a, country_code)]


async def load_alerts(store: DocumentStore) -> List[AlertRecord]:
    """Every stored alert; documents that no longer parse are logged and left out."""
    alerts: List[AlertRecord] = []
    for doc in await store.list(DISASTERS):
        try:
            alerts.append(AlertRecord.from_dict(doc.data))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Unreadable alert document %s: %s", doc.id, exc)
    return alerts


async def notify_user_of_ongoing_disasters(
    store: DocumentStore,
    user_id: str,
    country_code: str,
    *,
    today: Optional[date] = None,
    push: Optional[PushSender] = None,
) -> ReactorResult:
    """
    Notify one user of every ongoing alert affecting ``country_code``.

    Parameters
    ----------
    store : DocumentStore
    user_id : str
    country_code : str
        The user's new ISO2 country code.
    today : date, optional
        UTC calendar day to test against; defaults to now.
    push : callable, optional
        ``push(tokens, alert)`` delivery function; no push when omitted.

    Returns
    -------
    ReactorResult
    """
    today = today or _utc_today()
    code = country_code.upper()
    result = ReactorResult(user_id=user_id, country_code=code)

    alerts = await load_alerts(store)
    result.ongoing_alerts = sum(1 for a in alerts if is_ongoing(a, today))
    relevant = select_relevant_alerts(alerts, code, today)
    result.relevant_alerts = len(relevant)

    if not relevant:
        logger.info(
            "No ongoing alerts for user %s in %s", user_id, code,
            extra={"user_id": user_id},
        )
        return result

    tokens = await get_user_push_tokens(store, [user_id]) if push else []
    batch = store.batch()

    for alert in relevant:
        try:
            prepared = await prepare_notification(store, alert, user_id)
        except StoreError as exc:
            result.errors += 1
            logger.error(
                "Notification check failed for user %s, alert %s: %s",
                user_id, alert.doc_id, exc.message,
                extra={"alert_id": alert.doc_id, "user_id": user_id},
            )
            continue
        if not stage_notification(batch, prepared):
            continue
        if tokens:
            receipts = await push(tokens, alert)
            result.push_batches += len(receipts)

    if len(batch):
        result.notifications_created = await store.commit(batch)

    logger.info(
        "Notified user %s of %d ongoing alerts in %s",
        user_id, result.notifications_created, code,
        extra={"user_id": user_id, "recipient_count": 1},
    )
    return result


def _country_of(profile: Optional[Dict[str, Any]]) -> Optional[str]:
    if not profile:
        return None
    return UserLocation.from_dict(profile.get("location")).country_code


async def on_user_location_change(
    store: DocumentStore,
    user_id: str,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    *,
    today: Optional[date] = None,
    push: Optional[PushSender] = None,
) -> Optional[ReactorResult]:
    """
    React to a profile write.

    ``before`` / ``after`` are the user document bodies around the write.
    Returns None when the new profile has no country or the country did
    not change.
    """
    old_code = _country_of(before)
    new_code = _country_of(after)

    if not new_code:
        logger.debug("User %s has no country after update", user_id)
        return None
    if old_code == new_code:
        return None

    logger.info(
        "User %s moved %s → %s", user_id, old_code or "-", new_code,
        extra={"user_id": user_id},
    )
    return await notify_user_of_ongoing_disasters(
        store, user_id, new_code, today=today, push=push,
    )
