"""
models.py — Shared data structures for alert ingestion and fan-out.

Defines:
    • NormalizeStatus / NotificationStatus — per-step outcomes
    • AlertRecord            — canonical disaster event (disasters/{id})
    • AlertSummary           — denormalised alert block for push + inbox
    • UserLocation           — the slice of a user profile this core reads
    • UserNotificationRecord — per-user delivery receipt
    • CycleSummary           — counts emitted by one poll cycle

═══════════════════════════════════════════════════════════════════════════
PERSISTED KEYS
═══════════════════════════════════════════════════════════════════════════

Idempotency depends on these formats matching the mobile app exactly:

    AlertRecord             "{eventId}-{episodeId}"            e.g. "1000123-1"
    UserNotificationRecord  "{eventId}-{episodeId}-{userId}"   e.g. "1000123-1-u42"

An event can have several episodes; every (eventId, episodeId) pair is
its own record. A pair that has been stored once is never rewritten.

Document field names (eventid, htmldescription, reportUrl, isRead, …)
follow the feed / app schema rather than Python naming, because the
mobile client reads the same documents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class NormalizeStatus(str, Enum):
    """Outcome of normalising one feed event."""
    NEW     = "new"       # first sighting, must be stored
    SKIPPED = "skipped"   # key already stored


class NotificationStatus(str, Enum):
    """Outcome of preparing one user notification."""
    SAVE    = "save"      # record built, caller persists
    SKIPPED = "skipped"   # user already has this notification


class DeliveryStatus(str, Enum):
    """Push gateway outcome for one batch of tokens."""
    DELIVERED = "delivered"   # gateway accepted the request
    FAILED    = "failed"      # transport error or non-2xx


# ═══════════════════════════════════════════════════════════════════════════
# Keys & helpers
# ═══════════════════════════════════════════════════════════════════════════

def alert_doc_id(event_id: int, episode_id: int) -> str:
    return f"{event_id}-{episode_id}"


def notification_doc_id(event_id: int, episode_id: int, user_id: str) -> str:
    return f"{event_id}-{episode_id}-{user_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: Any) -> datetime:
    """
    Coerce a stored or feed date value into an aware UTC datetime.

    Accepts datetime, date, or ISO-8601 strings (with or without offset,
    with or without a trailing "Z"). Naive values are taken as UTC.

    Raises
    ------
    ValueError
        If the value cannot be interpreted as an instant.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a date value: {value!r}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_instant(value: Any) -> Optional[datetime]:
    return parse_instant(value) if value not in (None, "") else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
# Alert records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AffectedCountry:
    iso2: str
    countryname: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"iso2": self.iso2, "countryname": self.countryname}


@dataclass
class SeverityData:
    severity: float = 0.0
    severitytext: str = ""
    severityunit: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "severitytext": self.severitytext,
            "severityunit": self.severityunit,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SeverityData":
        data = data or {}
        return cls(
            severity=float(data.get("severity") or 0.0),
            severitytext=str(data.get("severitytext") or ""),
            severityunit=str(data.get("severityunit") or ""),
        )


@dataclass
class AlertRecord:
    """
    Canonical disaster event as stored in ``disasters/{eventId}-{episodeId}``.

    Created once by the normaliser on first sighting, never mutated by
    this backend afterwards.
    """
    eventid: int
    episodeid: int
    eventtype: str
    name: str
    fromdate: datetime
    todate: datetime
    alertlevel: str = ""
    alertscore: float = 0.0
    description: str = ""
    htmldescription: str = ""
    affectedcountries: List[AffectedCountry] = field(default_factory=list)
    severitydata: SeverityData = field(default_factory=SeverityData)
    datemodified: Optional[datetime] = None
    geometry: Optional[Dict[str, Any]] = None
    bbox: Optional[List[float]] = None
    icon: Optional[str] = None
    report_url: Optional[str] = None
    source: str = "GDACS"
    last_updated: Optional[datetime] = None

    @property
    def doc_id(self) -> str:
        return alert_doc_id(self.eventid, self.episodeid)

    @property
    def country_codes(self) -> List[str]:
        """Affected ISO2 codes, uppercased, in feed order."""
        return [c.iso2.upper() for c in self.affectedcountries if c.iso2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventid": self.eventid,
            "episodeid": self.episodeid,
            "eventtype": self.eventtype,
            "name": self.name,
            "description": self.description,
            "htmldescription": self.htmldescription,
            "icon": self.icon,
            "alertlevel": self.alertlevel,
            "alertscore": self.alertscore,
            "geometry": self.geometry,
            "bbox": self.bbox,
            "affectedcountries": [c.to_dict() for c in self.affectedcountries],
            "fromdate": self.fromdate,
            "todate": self.todate,
            "datemodified": self.datemodified,
            "severitydata": self.severitydata.to_dict(),
            "reportUrl": self.report_url,
            "lastUpdated": self.last_updated,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRecord":
        """Rebuild a record from a stored document (either store backend)."""
        return cls(
            eventid=int(data["eventid"]),
            episodeid=int(data["episodeid"]),
            eventtype=str(data.get("eventtype") or ""),
            name=str(data.get("name") or ""),
            fromdate=parse_instant(data["fromdate"]),
            todate=parse_instant(data["todate"]),
            alertlevel=str(data.get("alertlevel") or ""),
            alertscore=float(data.get("alertscore") or 0.0),
            description=str(data.get("description") or ""),
            htmldescription=str(data.get("htmldescription") or ""),
            affectedcountries=[
                AffectedCountry(str(c.get("iso2") or ""), str(c.get("countryname") or ""))
                for c in data.get("affectedcountries") or []
            ],
            severitydata=SeverityData.from_dict(data.get("severitydata")),
            datemodified=_optional_instant(data.get("datemodified")),
            geometry=data.get("geometry"),
            bbox=data.get("bbox"),
            icon=data.get("icon"),
            report_url=data.get("reportUrl"),
            source=str(data.get("source") or "GDACS"),
            last_updated=_optional_instant(data.get("lastUpdated")),
        )


@dataclass
class AlertSummary:
    """
    Denormalised alert block carried by push messages and inbox records.

    The app loads the full record by id when the user opens it.
    """
    eventid: int
    episodeid: int
    eventtype: str
    severity: str
    fromdate: datetime
    todate: datetime
    report_url: Optional[str] = None

    @classmethod
    def from_alert(cls, alert: AlertRecord) -> "AlertSummary":
        return cls(
            eventid=alert.eventid,
            episodeid=alert.episodeid,
            eventtype=alert.eventtype,
            severity=alert.severitydata.severitytext,
            fromdate=alert.fromdate,
            todate=alert.todate,
            report_url=alert.report_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventid": self.eventid,
            "episodeid": self.episodeid,
            "eventtype": self.eventtype,
            "severity": self.severity,
            "fromdate": _iso(self.fromdate),
            "todate": _iso(self.todate),
            "reportUrl": self.report_url,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Users & notifications
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class UserLocation:
    """
    Location block of ``users/{userId}``.

    Only ``country_code`` decides whether an alert affects the user;
    coordinates are informational.
    """
    country_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UserLocation":
        data = data or {}
        code = data.get("countryCode")
        return cls(
            country_code=str(code).upper() if code else None,
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "countryCode": self.country_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass
class UserNotificationRecord:
    """Stored in ``users/{userId}/notifications/{eventId}-{episodeId}-{userId}``."""
    title: str
    description: str
    data: AlertSummary
    icon: Optional[str] = None
    is_read: bool = False
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "isRead": self.is_read,
            "icon": self.icon,
            "timestamp": self.timestamp,
            "data": self.data.to_dict(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Step results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class NormalizedAlert:
    key: str
    status: NormalizeStatus
    record: Optional[AlertRecord] = None


@dataclass
class PreparedNotification:
    key: str
    user_id: str
    status: NotificationStatus
    record: Optional[UserNotificationRecord] = None


@dataclass
class BatchReceipt:
    """Push gateway result for one batch of tokens."""
    batch_index: int
    token_count: int
    status: DeliveryStatus
    response: Optional[Any] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_index": self.batch_index,
            "token_count": self.token_count,
            "status": self.status.value,
            "error_message": self.error_message,
        }


@dataclass
class CycleSummary:
    """Counts for one poll cycle."""
    fetched: int = 0
    new_alerts: int = 0
    updated_alerts: int = 0   # always 0 while re-broadcast episodes are skipped
    skipped_alerts: int = 0
    errored_alerts: int = 0
    notifications_created: int = 0
    notifications_failed: int = 0
    push_batches: int = 0
    push_batches_failed: int = 0
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "new_alerts": self.new_alerts,
            "updated_alerts": self.updated_alerts,
            "skipped_alerts": self.skipped_alerts,
            "errored_alerts": self.errored_alerts,
            "notifications_created": self.notifications_created,
            "notifications_failed": self.notifications_failed,
            "push_batches": self.push_batches,
            "push_batches_failed": self.push_batches_failed,
            "started_at": self.started_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class ReactorResult:
    """Outcome of re-notifying one user after a location change."""
    user_id: str
    country_code: str
    ongoing_alerts: int = 0
    relevant_alerts: int = 0
    notifications_created: int = 0
    push_batches: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "country_code": self.country_code,
            "ongoing_alerts": self.ongoing_alerts,
            "relevant_alerts": self.relevant_alerts,
            "notifications_created": self.notifications_created,
            "push_batches": self.push_batches,
            "errors": self.errors,
        }
