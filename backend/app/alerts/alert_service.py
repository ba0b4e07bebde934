"""
alert_service.py — Poll orchestration for disaster-alert ingestion.

This is the central coordinator that, once per scheduled invocation:
    1. Fetches the GDACS feed
    2. Normalises every event (new / skipped / errored)
    3. For each new alert, resolves the affected users by country
    4. Pushes the alert to their devices
    5. Prepares one inbox notification per affected user
    6. Commits the alert and its notifications in one atomic batch
    7. Logs a cycle summary

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  Fetch              │  one GET; failure aborts the whole cycle
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐   per event, up to EVENT_CONCURRENCY at once
    │  Normalise          │──── skipped ──► count, done
    │                     │──── errored ──► log, count, done
    └─────────┬───────────┘
              │ new
              ▼
    ┌─────────────────────┐
    │  Stage alert record │  batch.create(disasters/{id})
    │  Resolve users      │  chunked "in" queries on location.countryCode
    │  Resolve tokens     │  users without a token are skipped
    │  Dispatch push      │  100 tokens per request, best effort
    │  Stage notifications│  one per user, skipped if already present
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  Commit             │  one atomic batch per alert, serialised
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  Summarise          │  new / updated / skipped / errored counts
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
IDEMPOTENCY & PARTIAL FAILURE
═══════════════════════════════════════════════════════════════════════════

Invocations are at-least-once and may be cut off by the platform's
execution budget. Each alert commits on its own, so a truncated cycle
keeps whatever it finished; the next cycle skips those keys and picks up
the rest. Every alert belongs to exactly one batch.

If user resolution or the commit fails, the alert record is not stored,
so the next cycle sees the event as new and retries the whole fan-out.
Notifications already delivered are skipped by the writer on retry.

A failed existence check for one user's notification is local to that
user: it is logged and counted, and the alert commits with everyone
else's notifications. Any other error in one event counts that event as
errored; the remaining events of the cycle still run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from backend.app.alerts import location_reactor
from backend.app.alerts.channels import expo_push
from backend.app.alerts.geo_fence import (
    extract_affected_country_codes,
    get_user_push_tokens,
    resolve_affected_users,
)
from backend.app.alerts.models import (
    AlertRecord,
    BatchReceipt,
    CycleSummary,
    DeliveryStatus,
    NormalizeStatus,
    ReactorResult,
)
from backend.app.alerts.normalizer import event_key, normalize
from backend.app.alerts.notification_writer import (
    prepare_notification,
    stage_notification,
)
from backend.app.core.config import settings
from backend.app.core.errors import (
    AlertPipelineError,
    FeedFetchError,
    MalformedEventError,
    StoreError,
)
from backend.app.ingestion.gdacs_feed import fetch_gdacs_events
from backend.app.store import DISASTERS, DocumentStore

logger = logging.getLogger(__name__)

# Errors a single raw event can raise while being normalised
_EVENT_ERRORS = (MalformedEventError, KeyError, TypeError, ValueError)


@dataclass
class _FanOutResult:
    receipts: List[BatchReceipt] = field(default_factory=list)
    alert_stored: bool = False
    notifications_created: int = 0
    notifications_failed: int = 0


class AlertService:
    """
    Poll orchestrator and shared fan-out primitives.

    Usage:
        async with httpx.AsyncClient() as client:
            service = AlertService(store, client)
            summary = await service.poll_alerts()
    """

    def __init__(
        self,
        store: DocumentStore,
        client: httpx.AsyncClient,
        *,
        feed_url: Optional[str] = None,
        feed_timeout: Optional[float] = None,
        push_url: Optional[str] = None,
        push_timeout: Optional[float] = None,
        push_batch_size: Optional[int] = None,
        in_query_limit: Optional[int] = None,
        event_concurrency: Optional[int] = None,
        source_tag: Optional[str] = None,
    ):
        self.store = store
        self.client = client
        self.feed_url = feed_url or settings.GDACS_FEED_URL
        self.feed_timeout = feed_timeout or settings.FEED_FETCH_TIMEOUT
        self.push_url = push_url or settings.EXPO_PUSH_URL
        self.push_timeout = push_timeout or settings.PUSH_TIMEOUT
        self.push_batch_size = push_batch_size or settings.PUSH_BATCH_SIZE
        self.in_query_limit = in_query_limit or settings.STORE_IN_QUERY_LIMIT
        self.event_concurrency = max(1, event_concurrency or settings.EVENT_CONCURRENCY)
        self.source_tag = source_tag or settings.ALERT_SOURCE_TAG
        self._commit_lock = asyncio.Lock()

    # ═══════════════════════════════════════════════════════════════════
    # Shared primitives (also used by the location reactor)
    # ═══════════════════════════════════════════════════════════════════

    async def dispatch_push(
        self,
        tokens: List[str],
        alert: AlertRecord,
    ) -> List[BatchReceipt]:
        """Best-effort push of one alert; never raises for gateway errors."""
        return await expo_push.send(
            self.client,
            tokens,
            alert,
            endpoint=self.push_url,
            batch_size=self.push_batch_size,
            timeout=self.push_timeout,
        )

    async def commit(self, batch) -> int:
        """Serialised atomic commit; no-op for an empty batch."""
        if len(batch) == 0:
            return 0
        async with self._commit_lock:
            return await self.store.commit(batch)

    # ═══════════════════════════════════════════════════════════════════
    # Poll cycle
    # ═══════════════════════════════════════════════════════════════════

    async def poll_alerts(self) -> CycleSummary:
        """
        Run one poll cycle.

        Returns
        -------
        CycleSummary

        Raises
        ------
        FeedFetchError
            If the feed could not be fetched; nothing was processed.
        """
        summary = CycleSummary()

        try:
            feed = await fetch_gdacs_events(
                self.client, self.feed_url, timeout=self.feed_timeout,
            )
        except FeedFetchError as exc:
            logger.error("Failed to fetch GDACS alerts: %s", exc.message)
            raise

        summary.fetched = len(feed)
        features, duplicates = self._unique_features(feed.features)
        summary.skipped_alerts += duplicates

        semaphore = asyncio.Semaphore(self.event_concurrency)

        async def _bounded(feature: Dict[str, Any]) -> None:
            async with semaphore:
                await self._process_event(feature, summary)

        results = await asyncio.gather(
            *(_bounded(f) for f in features), return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                summary.errored_alerts += 1
                logger.error("Unexpected error processing GDACS event: %r", result,
                             exc_info=result)

        summary.completed_at = datetime.now(timezone.utc)
        logger.info(
            "GDACS alert sync summary -> New: %d, Updated: %d, Skipped: %d, "
            "Errored: %d, Notifications: %d (%d failed), Push batches: %d (%d failed), %.1fs",
            summary.new_alerts, summary.updated_alerts, summary.skipped_alerts,
            summary.errored_alerts, summary.notifications_created,
            summary.notifications_failed,
            summary.push_batches, summary.push_batches_failed,
            summary.duration_seconds,
        )
        return summary

    @staticmethod
    def _unique_features(
        features: List[Dict[str, Any]],
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Drop repeated keys within one feed response.

        Keeps the first occurrence; features whose key cannot be read are
        kept so the normaliser reports them as errored.
        """
        seen = set()
        unique: List[Dict[str, Any]] = []
        duplicates = 0
        for feature in features:
            try:
                key = event_key(feature)
            except _EVENT_ERRORS:
                unique.append(feature)
                continue
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
            unique.append(feature)
        return unique, duplicates

    async def _process_event(self, feature: Dict[str, Any], summary: CycleSummary) -> None:
        try:
            normalized = await normalize(self.store, feature, source=self.source_tag)
        except _EVENT_ERRORS as exc:
            summary.errored_alerts += 1
            logger.warning("Skipping malformed GDACS event: %s", exc)
            return
        except StoreError as exc:
            summary.errored_alerts += 1
            logger.error("Existence check failed, event deferred: %s", exc.message)
            return

        if normalized.status == NormalizeStatus.SKIPPED:
            summary.skipped_alerts += 1
            return

        alert = normalized.record
        try:
            outcome = await self._fan_out(alert)
        except AlertPipelineError as exc:
            summary.errored_alerts += 1
            logger.error(
                "Fan-out aborted for alert %s: %s", alert.doc_id, exc.message,
                extra={"alert_id": alert.doc_id},
            )
            return

        summary.push_batches += len(outcome.receipts)
        summary.push_batches_failed += sum(
            1 for r in outcome.receipts if r.status == DeliveryStatus.FAILED
        )
        summary.notifications_created += outcome.notifications_created
        summary.notifications_failed += outcome.notifications_failed
        if outcome.alert_stored:
            summary.new_alerts += 1
        else:
            # stored by an overlapping run between normalise and commit
            summary.skipped_alerts += 1

    async def _fan_out(self, alert: AlertRecord) -> _FanOutResult:
        """Deliver one new alert and commit it with its notifications."""
        batch = self.store.batch()
        batch.create(DISASTERS, alert.doc_id, alert.to_dict())

        country_codes = extract_affected_country_codes(alert)
        user_ids = await resolve_affected_users(
            self.store, country_codes, chunk_size=self.in_query_limit,
        )
        logger.info(
            "Alert %s (%s %s) affects %d users in %s",
            alert.doc_id, alert.alertlevel, alert.eventtype,
            len(user_ids), ",".join(country_codes) or "-",
            extra={"alert_id": alert.doc_id, "recipient_count": len(user_ids),
                   "country_codes": country_codes},
        )

        tokens = await get_user_push_tokens(self.store, user_ids)
        outcome = _FanOutResult(receipts=await self.dispatch_push(tokens, alert))

        for user_id in user_ids:
            try:
                prepared = await prepare_notification(self.store, alert, user_id)
            except StoreError as exc:
                outcome.notifications_failed += 1
                logger.error(
                    "Notification check failed for user %s, alert %s: %s",
                    user_id, alert.doc_id, exc.message,
                    extra={"alert_id": alert.doc_id, "user_id": user_id},
                )
                continue
            stage_notification(batch, prepared)

        await self.commit(batch)
        outcome.alert_stored = (DISASTERS, alert.doc_id) in batch.created
        outcome.notifications_created = sum(
            1 for collection, _ in batch.created if collection != DISASTERS
        )
        return outcome

    # ═══════════════════════════════════════════════════════════════════
    # Location-change entry points
    # ═══════════════════════════════════════════════════════════════════

    async def notify_user_of_ongoing_disasters(
        self,
        user_id: str,
        country_code: str,
        *,
        today: Optional[date] = None,
    ) -> ReactorResult:
        return await location_reactor.notify_user_of_ongoing_disasters(
            self.store, user_id, country_code, today=today, push=self.dispatch_push,
        )

    async def on_user_location_change(
        self,
        user_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        *,
        today: Optional[date] = None,
    ) -> Optional[ReactorResult]:
        return await location_reactor.on_user_location_change(
            self.store, user_id, before, after, today=today, push=self.dispatch_push,
        )
