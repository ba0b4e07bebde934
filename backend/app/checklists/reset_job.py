"""
reset_job.py — Scheduled reset of recurring checklists.

Runs at 00:00 UTC on the 1st of every month. For every user and every
checklist progress record:

    definition missing            → skip
    not recurring / other cadence → skip
    period token already completed → skip (grace: done early this period)
    otherwise                      → checkedItems := [False] * n

Only ``checkedItems`` is written; ``completedPeriods`` and the completion
timestamps are history and stay as they are. A failure on one record is
logged and the sweep moves on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from backend.app.checklists.models import (
    ChecklistDefinition,
    ChecklistProgress,
    Frequency,
    ResetSummary,
)
from backend.app.checklists.periods import current_period
from backend.app.core.errors import NotFoundError, StoreError
from backend.app.store import CHECKLISTS, USERS, DocumentStore, checklist_progress_path

logger = logging.getLogger(__name__)

_RECORD_ERRORS = (StoreError, NotFoundError, KeyError, TypeError, ValueError)


class _DefinitionCache:
    """Checklist definitions loaded at most once per run."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self._loaded: Dict[str, Optional[ChecklistDefinition]] = {}

    async def get(self, checklist_id: str) -> Optional[ChecklistDefinition]:
        if checklist_id not in self._loaded:
            data = await self._store.get(CHECKLISTS, checklist_id)
            self._loaded[checklist_id] = (
                ChecklistDefinition.from_dict(checklist_id, data) if data else None
            )
        return self._loaded[checklist_id]


async def reset_recurring_checklists(
    store: DocumentStore,
    *,
    now: Optional[datetime] = None,
    frequency: str = Frequency.MONTHLY.value,
) -> ResetSummary:
    """
    Clear the checked items of every recurring checklist not yet done this period.

    Parameters
    ----------
    store : DocumentStore
    now : datetime, optional
        Instant that selects the period; defaults to the current UTC time.
    frequency : str
        Cadence to reset ("monthly" on the schedule).

    Returns
    -------
    ResetSummary
    """
    period = current_period(frequency, now)
    summary = ResetSummary(period=period, frequency=frequency)
    logger.info("Starting recurring checklist reset for %s", period)

    definitions = _DefinitionCache(store)

    for user in await store.list(USERS):
        summary.users_scanned += 1
        try:
            records = await store.list(checklist_progress_path(user.id))
        except StoreError as exc:
            summary.errors += 1
            logger.error(
                "Could not list checklist progress for user %s: %s", user.id, exc.message,
                extra={"user_id": user.id},
            )
            continue

        for record in records:
            summary.records_scanned += 1
            try:
                progress = ChecklistProgress.from_dict(record.id, record.data)
                definition = await definitions.get(progress.checklist_id)

                if (
                    definition is None
                    or not definition.is_recurring
                    or definition.frequency != frequency
                ):
                    summary.skipped_not_applicable += 1
                    continue

                if progress.completed_in(period):
                    summary.skipped_completed += 1
                    continue

                await store.update(
                    checklist_progress_path(user.id),
                    record.id,
                    {"checkedItems": progress.reset_items()},
                )
                summary.records_reset += 1
                logger.info(
                    "Reset checklist %s for user %s for %s",
                    progress.checklist_id, user.id, period,
                    extra={"user_id": user.id},
                )
            except _RECORD_ERRORS as exc:
                summary.errors += 1
                logger.error(
                    "Failed to reset checklist %s for user %s: %s",
                    record.id, user.id, exc,
                    extra={"user_id": user.id},
                )

    summary.completed_at = datetime.now(timezone.utc)
    logger.info(
        "Checklist reset complete for %s -> reset: %d, already done: %d, "
        "not applicable: %d, errors: %d",
        period, summary.records_reset, summary.skipped_completed,
        summary.skipped_not_applicable, summary.errors,
    )
    return summary
