"""
gdacs_feed.py — GDACS hazard feed ingestion.

Fetches the "latest events" list from the Global Disaster Alert and
Coordination System. The endpoint returns GeoJSON:

    {
      "type": "FeatureCollection",
      "features": [
        {
          "type": "Feature",
          "bbox": [lon_min, lat_min, lon_max, lat_max],
          "geometry": {"type": "Point", "coordinates": [lon, lat]},
          "properties": {
            "eventid": 1000123, "episodeid": 1, "eventtype": "EQ",
            "alertlevel": "Orange", "fromdate": "2025-08-20T03:14:00", ...
            "affectedcountries": [{"iso2": "PH", "countryname": "Philippines"}]
          }
        }, ...
      ]
    }

Error Handling Strategy
========================
    Transport errors (DNS, timeout, refused)  → FeedFetchError
    HTTP non-2xx                              → FeedFetchError
    Body not JSON / no "features" list        → FeedFetchError

There is no retry here: the poller runs on a schedule, so the next
invocation is the retry. Individual features are NOT validated at fetch
time — a malformed feature must only cost that one event, which the
normaliser handles.

API Reference:
    https://www.gdacs.org/gdacsapi/swagger/index.html
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

import httpx

from backend.app.core.errors import FeedFetchError

logger = logging.getLogger(__name__)

FEED_SERVICE_NAME = "GDACS"


@dataclass
class FeedResult:
    """Raw features from one successful fetch."""
    features: List[Dict[str, Any]] = field(default_factory=list)
    fetch_time_ms: float = 0.0

    def __len__(self) -> int:
        return len(self.features)


async def fetch_gdacs_events(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float = 30.0,
) -> FeedResult:
    """
    Fetch the latest GDACS events once.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared client owned by the caller.
    url : str
        Feed endpoint.
    timeout : float
        Request timeout in seconds.

    Returns
    -------
    FeedResult

    Raises
    ------
    FeedFetchError
        On transport failure, non-2xx status or an unusable body.
    """
    start = time.monotonic()

    try:
        response = await client.get(
            url, headers={"Accept": "application/json"}, timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise FeedFetchError(FEED_SERVICE_NAME, f"transport error: {exc}", url=url) from exc

    if not response.is_success:
        raise FeedFetchError(
            FEED_SERVICE_NAME,
            f"HTTP {response.status_code}",
            url=url,
            status=response.status_code,
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise FeedFetchError(FEED_SERVICE_NAME, "response is not JSON", url=url) from exc

    features = body.get("features") if isinstance(body, dict) else None
    if not isinstance(features, list):
        raise FeedFetchError(FEED_SERVICE_NAME, "response has no 'features' list", url=url)

    elapsed = (time.monotonic() - start) * 1000
    logger.info("Fetched %d GDACS features in %.0fms", len(features), elapsed)
    return FeedResult(features=features, fetch_time_ms=elapsed)
