"""Booking constraints: who may fill which slot, and how many events fit in a day.

Every check returns an :class:`Ok` or a :class:`Conflict`; nothing here raises
for a violated constraint. The caller decides how to surface the conflict.
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol, Sequence, Tuple, Union
from zoneinfo import ZoneInfo

from positions import CapabilityCatalog, normalize_position

UTC = datetime.timezone.utc


class ConflictKind(str, enum.Enum):
    NOT_QUALIFIED = "NotQualified"
    ALREADY_ASSIGNED_OTHER_POSITION = "AlreadyAssignedOtherPosition"
    SLOT_OCCUPIED = "SlotOccupied"
    DOUBLE_BOOKED = "DoubleBooked"
    LIMIT_REACHED = "LimitReached"
    RULE_RANGE_OVERLAP = "RuleRangeOverlap"
    UNKNOWN_ENTITY = "UnknownEntity"


@dataclass(frozen=True)
class Ok:
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Conflict:
    kind: ConflictKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        payload.update(self.details)
        return payload

    @classmethod
    def unknown(cls, entity: str, identifier: Any) -> "Conflict":
        return cls(
            ConflictKind.UNKNOWN_ENTITY,
            f"{entity} {identifier} was not found.",
            {"entity": entity, "id": identifier},
        )

    @classmethod
    def limit_reached(cls, current: int, limit: int) -> "Conflict":
        return cls(
            ConflictKind.LIMIT_REACHED,
            f"Maximum of {limit} events per day. This date already has {current} events booked.",
            {"current": current, "limit": limit},
        )


Outcome = Union[Ok, Conflict]


def _ensure_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def business_day(instant: datetime.datetime, timezone: datetime.tzinfo = UTC) -> datetime.date:
    """Return the calendar date of `instant` in the business timezone; naive values are UTC."""
    return _ensure_aware(instant).astimezone(timezone).date()


class ExclusivityPolicy(Protocol):
    """Decides which bookings compete for the same staff member."""

    def window(self, instant: datetime.datetime) -> Tuple[datetime.datetime, datetime.datetime]:
        """Return the [start, end) span in UTC that may hold competing events."""
        ...

    def overlaps(self, first: datetime.datetime, second: datetime.datetime) -> bool:
        ...


class SameDayExclusivity:
    """Two bookings compete when they fall on the same business day."""

    def __init__(self, timezone: datetime.tzinfo | str = UTC) -> None:
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    def day(self, instant: datetime.datetime) -> datetime.date:
        return business_day(instant, self.timezone)

    def window(self, instant: datetime.datetime) -> Tuple[datetime.datetime, datetime.datetime]:
        day = self.day(instant)
        start = datetime.datetime.combine(day, datetime.time.min, tzinfo=self.timezone)
        end = datetime.datetime.combine(day + datetime.timedelta(days=1), datetime.time.min, tzinfo=self.timezone)
        return start.astimezone(UTC), end.astimezone(UTC)

    def overlaps(self, first: datetime.datetime, second: datetime.datetime) -> bool:
        return self.day(first) == self.day(second)


def _field(item: Any, key: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)


def _event_date(event: Any) -> datetime.datetime:
    value = _field(event, "instant") or _field(event, "date")
    return _ensure_aware(value)


def _find_slot(positions: Sequence[Any], position: str) -> Tuple[int, Optional[Any]]:
    target = normalize_position(position)
    for index, slot in enumerate(positions):
        if normalize_position(_field(slot, "position", "")) == target:
            return index, slot
    return -1, None


def can_assign(
    event: Any,
    position: str,
    staff_id: int,
    catalog: CapabilityCatalog,
    same_day_events: Iterable[Any],
    *,
    slot_index: Optional[int] = None,
    exclusivity: Optional[ExclusivityPolicy] = None,
) -> Outcome:
    """Validate placing `staff_id` into `position` of `event`.

    On success the :class:`Ok` value is the slot index to write. Slots are
    kept packed, so an explicit `slot_index` must be the next free index;
    anything further along is `SlotOccupied`. A person who already holds a
    slot in `position` gets that index back, which the ledger treats as a no-op.
    """
    if event is None:
        return Conflict.unknown("Event", None)
    event_id = _field(event, "id")
    positions = list(_field(event, "positions", []) or [])
    _, target = _find_slot(positions, position)
    if target is None:
        return Conflict.unknown("Position", position)
    if not catalog.has_staff(staff_id):
        return Conflict.unknown("Staff", staff_id)
    label = _field(target, "position")

    if not catalog.is_qualified(staff_id, label):
        return Conflict(
            ConflictKind.NOT_QUALIFIED,
            f"Staff {staff_id} is not qualified for {label}.",
            {"staff_id": staff_id, "position": label},
        )

    for slot in positions:
        if slot is target:
            continue
        if staff_id in (_field(slot, "assigned_staff", []) or []):
            return Conflict(
                ConflictKind.ALREADY_ASSIGNED_OTHER_POSITION,
                f"Staff {staff_id} is already assigned to {_field(slot, 'position')} in this event.",
                {"staff_id": staff_id, "event_id": event_id, "position": _field(slot, "position")},
            )

    assigned = list(_field(target, "assigned_staff", []) or [])
    required = int(_field(target, "required_count", 0) or 0)
    if staff_id in assigned:
        current_index = assigned.index(staff_id)
        if slot_index is None or slot_index == current_index:
            return Ok(current_index)
        return Conflict(
            ConflictKind.SLOT_OCCUPIED,
            f"Staff {staff_id} already holds slot {current_index + 1} of {label}.",
            {"position": label, "slot_index": slot_index},
        )
    if slot_index is None:
        slot_index = len(assigned)
    if slot_index < 0 or slot_index >= required:
        return Conflict(
            ConflictKind.SLOT_OCCUPIED,
            f"{label} has no open slot {slot_index + 1}; {len(assigned)}/{required} filled.",
            {"position": label, "slot_index": slot_index, "required_count": required},
        )
    if slot_index < len(assigned):
        return Conflict(
            ConflictKind.SLOT_OCCUPIED,
            f"Slot {slot_index + 1} of {label} is already filled.",
            {"position": label, "slot_index": slot_index, "staff_id": assigned[slot_index]},
        )
    if slot_index > len(assigned):
        return Conflict(
            ConflictKind.SLOT_OCCUPIED,
            f"Slot {slot_index + 1} of {label} is out of order; the next open slot is {len(assigned) + 1}.",
            {"position": label, "slot_index": slot_index, "next_slot_index": len(assigned)},
        )

    policy = exclusivity or SameDayExclusivity()
    event_date = _event_date(event)
    for other in same_day_events:
        if _field(other, "id") == event_id or _field(other, "is_archived", False):
            continue
        if not policy.overlaps(event_date, _event_date(other)):
            continue
        for slot in _field(other, "positions", []) or []:
            if staff_id in (_field(slot, "assigned_staff", []) or []):
                return Conflict(
                    ConflictKind.DOUBLE_BOOKED,
                    f"Staff {staff_id} is already assigned to another event on the same day.",
                    {"staff_id": staff_id, "event_id": _field(other, "id"), "position": _field(slot, "position")},
                )
    return Ok(slot_index)


def can_create_event(current_count: int, limit: int) -> Outcome:
    """Daily capacity guard: reject once the day holds `limit` active events."""
    if current_count >= limit:
        return Conflict.limit_reached(current_count, limit)
    return Ok(current_count)


def check_rule_range(min_guests: int, max_guests: int, rules: Iterable[Any], *, exclude_id: Optional[int] = None) -> Outcome:
    """Reject a guest range that shares any value with an existing rule."""
    for rule in rules:
        if exclude_id is not None and _field(rule, "id") == exclude_id:
            continue
        low = int(_field(rule, "min_guests"))
        high = int(_field(rule, "max_guests"))
        if min_guests <= high and low <= max_guests:
            return Conflict(
                ConflictKind.RULE_RANGE_OVERLAP,
                f"Range {min_guests}-{max_guests} overlaps with an existing rule ({low}-{high}).",
                {"rule_id": _field(rule, "id"), "min_guests": low, "max_guests": high},
            )
    return Ok()
