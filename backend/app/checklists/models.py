"""
Data structures for preparedness checklists.

═══════════════════════════════════════════════════════════════════════════
DOCUMENT LAYOUT
═══════════════════════════════════════════════════════════════════════════

checklist/{checklistId}                         (definition, read-only here)
─────────────────────────────────────────────────────────────────────────────
| Field       | Type        | Description                                  |
|-------------|-------------|----------------------------------------------|
| title       | string      | Display title                                |
| type        | string      | "one-time" or "recurring"                    |
| frequency   | string      | "none", "weekly" or "monthly"                |
| description | string      | Optional                                     |
| items       | string[]    | Item labels, in display order                |
─────────────────────────────────────────────────────────────────────────────

users/{userId}/checklistProgress/{checklistId}
─────────────────────────────────────────────────────────────────────────────
| Field            | Type      | Description                               |
|------------------|-----------|-------------------------------------------|
| checklistId      | string    | Definition id                             |
| checkedItems     | bool[]    | One flag per definition item              |
| completedPeriods | string[]  | Period tokens in which it was completed   |
| firstCompletedAt | timestamp | First completion, optional                |
| isCompleted      | bool      | Completed in the current period           |
─────────────────────────────────────────────────────────────────────────────

The reset job only ever rewrites ``checkedItems``; completion history is
left for the app's streak and badge logic.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.alerts.models import parse_instant


class ChecklistType(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"


class Frequency(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class ChecklistDefinition:
    """A checklist as published in ``checklist/{id}``."""
    id: str
    title: str = ""
    type: str = ChecklistType.ONE_TIME.value
    frequency: str = Frequency.NONE.value
    description: str = ""
    items: List[str] = field(default_factory=list)

    @property
    def is_recurring(self) -> bool:
        return self.type == ChecklistType.RECURRING.value

    @classmethod
    def from_dict(cls, doc_id: str, data: Dict[str, Any]) -> "ChecklistDefinition":
        return cls(
            id=doc_id,
            title=str(data.get("title") or ""),
            type=str(data.get("type") or ChecklistType.ONE_TIME.value),
            frequency=str(data.get("frequency") or Frequency.NONE.value),
            description=str(data.get("description") or ""),
            items=[str(item) for item in data.get("items") or []],
        )


@dataclass
class ChecklistProgress:
    """One user's progress on one checklist."""
    checklist_id: str
    checked_items: List[bool] = field(default_factory=list)
    completed_periods: List[str] = field(default_factory=list)
    first_completed_at: Optional[datetime] = None
    is_completed: bool = False

    def completed_in(self, period: str) -> bool:
        return period in self.completed_periods

    def reset_items(self) -> List[bool]:
        """All-false flags, one per existing item."""
        return [False] * len(self.checked_items)

    @classmethod
    def from_dict(cls, doc_id: str, data: Dict[str, Any]) -> "ChecklistProgress":
        first = data.get("firstCompletedAt")
        return cls(
            checklist_id=str(data.get("checklistId") or doc_id),
            checked_items=[bool(v) for v in data.get("checkedItems") or []],
            completed_periods=[str(p) for p in data.get("completedPeriods") or []],
            first_completed_at=parse_instant(first) if first else None,
            is_completed=bool(data.get("isCompleted", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checklistId": self.checklist_id,
            "checkedItems": list(self.checked_items),
            "completedPeriods": list(self.completed_periods),
            "firstCompletedAt": self.first_completed_at,
            "isCompleted": self.is_completed,
        }


@dataclass
class ResetSummary:
    """Counts for one reset run."""
    period: str
    frequency: str = Frequency.MONTHLY.value
    users_scanned: int = 0
    records_scanned: int = 0
    records_reset: int = 0
    skipped_completed: int = 0
    skipped_not_applicable: int = 0
    errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "frequency": self.frequency,
            "users_scanned": self.users_scanned,
            "records_scanned": self.records_scanned,
            "records_reset": self.records_reset,
            "skipped_completed": self.skipped_completed,
            "skipped_not_applicable": self.skipped_not_applicable,
            "errors": self.errors,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
