"""Derive the staff positions an event needs from its guest count and add-ons.

Everything here is pure: callers pass in the rules, add-on definitions and
capability catalog they loaded, and get fresh objects back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from positions import CapabilityCatalog, clean_label, normalize_position


@dataclass
class PositionSlot:
    position: str
    required_count: int
    assigned_staff: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "required_count": self.required_count,
            "assigned_staff": list(self.assigned_staff),
        }


@dataclass
class RegenerationResult:
    positions: List[PositionSlot]
    dropped: List[Tuple[str, int]] = field(default_factory=list)


def _to_int(value: Any, *, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _entry(item: Any, key: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)


def find_rule(guest_count: int, rules: Iterable[Any]) -> Optional[Any]:
    """Return the first rule whose inclusive guest range contains `guest_count`."""
    for rule in rules:
        low = _to_int(_entry(rule, "min_guests"), default=-1)
        high = _to_int(_entry(rule, "max_guests"), default=-1)
        if low <= guest_count <= high:
            return rule
    return None


class _Accumulator:
    def __init__(self, catalog: Optional[CapabilityCatalog]) -> None:
        self._catalog = catalog
        self._labels: Dict[str, str] = {}
        self._counts: Dict[str, int] = {}

    def add(self, position: Any, count: int) -> None:
        label = clean_label(str(position or ""))
        key = normalize_position(label)
        if not key or count <= 0:
            return
        if key not in self._labels:
            self._labels[key] = self._catalog.canonical(label) if self._catalog else label
            self._counts[key] = 0
        self._counts[key] += count

    def slots(self) -> List[PositionSlot]:
        return [PositionSlot(self._labels[key], self._counts[key]) for key in self._labels]


def resolve_positions(
    guest_count: int,
    add_on_ids: Iterable[Any],
    rules: Sequence[Any],
    add_ons: Sequence[Any],
    catalog: Optional[CapabilityCatalog] = None,
) -> List[PositionSlot]:
    """Return the ordered, unassigned position list for an event.

    Order is rule positions first, then extra-condition positions, then
    add-on positions, each label appearing once at its first-seen index.
    Unmatched guest counts and unknown add-on ids contribute nothing.
    """
    selected: List[int] = []
    for value in add_on_ids or []:
        add_on_id = _to_int(value, default=-1)
        if add_on_id >= 0 and add_on_id not in selected:
            selected.append(add_on_id)
    accumulator = _Accumulator(catalog)

    rule = find_rule(_to_int(guest_count), rules)
    if rule is not None:
        for requirement in _entry(rule, "required_positions", []) or []:
            accumulator.add(_entry(requirement, "position"), _to_int(_entry(requirement, "count")))
        for condition in _entry(rule, "extra_conditions", []) or []:
            if _to_int(_entry(condition, "add_on_id"), default=-1) in selected:
                accumulator.add(_entry(condition, "position"), _to_int(_entry(condition, "count")))

    definitions = {_to_int(_entry(add_on, "id"), default=-1): add_on for add_on in add_ons}
    for add_on_id in selected:
        add_on = definitions.get(add_on_id)
        if add_on is None:
            continue
        for position in _entry(add_on, "associated_positions", []) or []:
            accumulator.add(position, 1)
    return accumulator.slots()


def regenerate_positions(previous: Iterable[Any], resolved: Iterable[PositionSlot]) -> RegenerationResult:
    """Carry assignments from `previous` onto `resolved` by position label.

    Staff whose label disappeared, or who no longer fit the new required
    count, are reported in `dropped` as (position, staff_id) pairs.
    """
    carried: Dict[str, Tuple[str, List[int]]] = {}
    for slot in previous:
        label = clean_label(str(_entry(slot, "position", "")))
        key = normalize_position(label)
        if not key:
            continue
        staff = [_to_int(value) for value in _entry(slot, "assigned_staff", []) or []]
        existing = carried.get(key)
        if existing:
            existing[1].extend(member for member in staff if member not in existing[1])
        else:
            carried[key] = (label, staff)

    positions: List[PositionSlot] = []
    dropped: List[Tuple[str, int]] = []
    for slot in resolved:
        key = normalize_position(slot.position)
        label, staff = carried.pop(key, (slot.position, []))
        keep = staff[: slot.required_count]
        dropped.extend((label, member) for member in staff[slot.required_count:])
        positions.append(PositionSlot(slot.position, slot.required_count, list(keep)))
    for label, staff in carried.values():
        dropped.extend((label, member) for member in staff)
    return RegenerationResult(positions=positions, dropped=dropped)
