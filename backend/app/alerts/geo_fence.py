"""
geo_fence.py — Country-level targeting for alert fan-out.

Determines which user accounts an alert reaches. A user is affected when
the ISO2 country code stored on their profile
(``users/{userId}.location.countryCode``) is one of the alert's affected
countries. Coordinates on the profile are not consulted.

═══════════════════════════════════════════════════════════════════════════
CHUNKED MEMBERSHIP QUERIES
═══════════════════════════════════════════════════════════════════════════

The document store's ``in`` query accepts a bounded number of values
(10). Large multi-country events are therefore split:

    codes = {PH, JP, ID, VN, TH, MY, SG, KH, LA, MM, BN, TL, ...}  N = 25

    chunk 1 ── 10 codes ──► query ──┐
    chunk 2 ── 10 codes ──► query ──┼──► union (no duplicate user ids)
    chunk 3 ──  5 codes ──► query ──┘

    queries issued = ceil(N / limit);  N = 0 issues none.

A failing chunk query propagates (StoreError). The caller aborts that
alert's fan-out; a partial user set is never used.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from backend.app.alerts.models import AlertRecord
from backend.app.store import USERS, DocumentStore

logger = logging.getLogger(__name__)

COUNTRY_FIELD = "location.countryCode"
PUSH_TOKEN_FIELD = "expoPushToken"


def extract_affected_country_codes(alert: AlertRecord) -> List[str]:
    """Uppercase ISO2 codes of the alert, de-duplicated, in feed order."""
    seen: List[str] = []
    for code in alert.country_codes:
        if code not in seen:
            seen.append(code)
    return seen


def affects_country(alert: AlertRecord, country_code: Optional[str]) -> bool:
    """True if ``country_code`` is among the alert's affected countries."""
    if not country_code:
        return False
    return country_code.upper() in alert.country_codes


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


async def resolve_affected_users(
    store: DocumentStore,
    country_codes: Iterable[str],
    *,
    chunk_size: Optional[int] = None,
) -> List[str]:
    """
    Return ids of users whose stored country is one of ``country_codes``.

    Parameters
    ----------
    store : DocumentStore
    country_codes : iterable of str
        ISO2 codes; case-insensitive, duplicates ignored.
    chunk_size : int, optional
        Values per ``in`` query; defaults to, and is capped at, the
        store's limit.

    Returns
    -------
    list of str
        Unique user ids, order unspecified.

    Raises
    ------
    StoreError
        If any chunk query fails.
    """
    codes = sorted({c.strip().upper() for c in country_codes if c and c.strip()})
    if not codes:
        return []

    size = min(chunk_size or store.max_in_values, store.max_in_values)
    user_ids: List[str] = []
    seen = set()

    for chunk in _chunks(codes, size):
        docs = await store.query_in(USERS, COUNTRY_FIELD, list(chunk))
        for doc in docs:
            if doc.id not in seen:
                seen.add(doc.id)
                user_ids.append(doc.id)

    logger.debug(
        "Resolved %d users for %d countries in %d queries",
        len(user_ids), len(codes), -(-len(codes) // size),
    )
    return user_ids


async def _push_token(store: DocumentStore, user_id: str) -> Optional[str]:
    doc = await store.get(USERS, user_id)
    if not doc:
        logger.debug("User %s has no profile document", user_id)
        return None
    token = doc.get(PUSH_TOKEN_FIELD)
    return str(token) if token else None


async def get_user_push_tokens(
    store: DocumentStore,
    user_ids: Sequence[str],
) -> List[str]:
    """
    Look up push tokens for ``user_ids``.

    Users without a profile or without a token are skipped; the result
    holds each distinct token once.
    """
    if not user_ids:
        return []
    tokens = await asyncio.gather(*(_push_token(store, uid) for uid in user_ids))
    unique: List[str] = []
    for token in tokens:
        if token and token not in unique:
            unique.append(token)
    return unique
