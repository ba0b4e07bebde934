"""
normalizer.py — Raw GDACS feature → canonical AlertRecord.

    normalize(store, feature) → NormalizedAlert(key, status, record)

    status = SKIPPED  the key "{eventid}-{episodeid}" is already stored;
                      no record is returned and nothing is touched.
    status = NEW      first sighting; every feed field mapped into the
                      stored shape, dates coerced to UTC instants,
                      optional fields defaulted, lastUpdated stamped.

Re-broadcast episodes carrying revised data are skipped, not merged:
only a genuinely new (eventid, episodeid) pair produces a record.

The normaliser never writes. The orchestrator persists NEW records in
its own atomic batch together with the alert's notifications.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.app.alerts.models import (
    AffectedCountry,
    AlertRecord,
    NormalizeStatus,
    NormalizedAlert,
    SeverityData,
    alert_doc_id,
    parse_instant,
)
from backend.app.core.errors import MalformedEventError
from backend.app.store import DISASTERS, DocumentStore

logger = logging.getLogger(__name__)


def _require_int(props: Dict[str, Any], name: str) -> int:
    value = props.get(name)
    if value is None or isinstance(value, bool):
        raise MalformedEventError(f"Feed event is missing '{name}'", field=name)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(
            f"Feed event has a non-integer '{name}': {value!r}", field=name,
        ) from exc


def _require_instant(props: Dict[str, Any], name: str, key: str) -> datetime:
    try:
        return parse_instant(props.get(name))
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(
            f"Feed event {key} has an invalid '{name}': {props.get(name)!r}",
            field=name,
            alert_id=key,
        ) from exc


def _affected_countries(props: Dict[str, Any], key: str) -> List[AffectedCountry]:
    raw = props.get("affectedcountries")
    if not isinstance(raw, list):
        raise MalformedEventError(
            f"Feed event {key} has no affected-country list",
            field="affectedcountries",
            alert_id=key,
        )
    countries = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("iso2"):
            logger.debug("Dropping affected country without iso2 on %s: %r", key, entry)
            continue
        countries.append(
            AffectedCountry(
                iso2=str(entry["iso2"]).upper(),
                countryname=str(entry.get("countryname") or ""),
            )
        )
    return countries


def _report_url(props: Dict[str, Any]) -> Optional[str]:
    url = props.get("url")
    if isinstance(url, dict):
        return url.get("report") or None
    return None


def event_key(feature: Dict[str, Any]) -> str:
    """Composite key of a raw feature; raises MalformedEventError."""
    props = feature.get("properties") if isinstance(feature, dict) else None
    if not isinstance(props, dict):
        raise MalformedEventError("Feed feature has no 'properties'", field="properties")
    return alert_doc_id(_require_int(props, "eventid"), _require_int(props, "episodeid"))


def build_alert_record(
    feature: Dict[str, Any],
    *,
    source: str = "GDACS",
    now: Optional[datetime] = None,
) -> AlertRecord:
    """
    Map one raw feature into an AlertRecord without touching the store.

    Raises
    ------
    MalformedEventError
        Missing identity fields, unparseable dates, or no country list.
    """
    key = event_key(feature)
    props = feature["properties"]

    return AlertRecord(
        eventid=_require_int(props, "eventid"),
        episodeid=_require_int(props, "episodeid"),
        eventtype=str(props.get("eventtype") or ""),
        name=str(props.get("name") or ""),
        description=str(props.get("description") or ""),
        htmldescription=str(props.get("htmldescription") or ""),
        icon=props.get("icon") or None,
        alertlevel=str(props.get("alertlevel") or ""),
        alertscore=float(props.get("alertscore") or 0.0),
        geometry=feature.get("geometry"),
        bbox=feature.get("bbox"),
        affectedcountries=_affected_countries(props, key),
        fromdate=_require_instant(props, "fromdate", key),
        todate=_require_instant(props, "todate", key),
        datemodified=(
            _require_instant(props, "datemodified", key)
            if props.get("datemodified") else None
        ),
        severitydata=SeverityData.from_dict(props.get("severitydata")),
        report_url=_report_url(props),
        source=source,
        last_updated=now or datetime.now(timezone.utc),
    )


async def normalize(
    store: DocumentStore,
    feature: Dict[str, Any],
    *,
    source: str = "GDACS",
) -> NormalizedAlert:
    """
    Decide whether a raw feature is new and, if so, build its record.

    Parameters
    ----------
    store : DocumentStore
        Read for the existence check only.
    feature : dict
        One element of the feed's ``features`` array.
    source : str
        Ingestion source tag written on new records.

    Returns
    -------
    NormalizedAlert
    """
    key = event_key(feature)

    if await store.exists(DISASTERS, key):
        return NormalizedAlert(key=key, status=NormalizeStatus.SKIPPED)

    record = build_alert_record(feature, source=source)
    return NormalizedAlert(key=key, status=NormalizeStatus.NEW, record=record)
