from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Set


POSITION_GROUPS: Dict[str, List[str]] = {
    "Service": [
        "Server",
        "Food Runner",
        "Busser",
        "Host",
    ],
    "Bar": [
        "Bartender",
        "Barback",
    ],
    "Kitchen": [
        "Chef",
        "Line Cook",
        "Prep Cook",
        "Dishwasher",
    ],
    "Leadership": [
        "Event Captain",
        "Event Manager",
    ],
}

_KEYWORD_RULES = [
    ("server", "Service"),
    ("runner", "Service"),
    ("bus", "Service"),
    ("host", "Service"),
    ("bar", "Bar"),
    ("chef", "Kitchen"),
    ("cook", "Kitchen"),
    ("dish", "Kitchen"),
    ("captain", "Leadership"),
    ("manager", "Leadership"),
]


def normalize_position(position: str) -> str:
    return " ".join((position or "").split()).lower()


def clean_label(position: str) -> str:
    """Collapse inner whitespace and trim a position label, keeping its casing."""
    return " ".join((position or "").split())


def position_group(position: str) -> str:
    label = normalize_position(position)
    if not label:
        return "Other"
    for group, names in POSITION_GROUPS.items():
        for name in names:
            if label == normalize_position(name):
                return group
    for keyword, target in _KEYWORD_RULES:
        if keyword in label:
            return target
    return "Other"


def defined_positions() -> List[str]:
    """Return a sorted list of positions shipped with the app."""
    positions: List[str] = []
    for names in POSITION_GROUPS.values():
        positions.extend(names)
    return sorted(set(positions))


def grouped_positions(positions: Iterable[str]) -> Dict[str, List[str]]:
    mapping: Dict[str, List[str]] = {group: [] for group in POSITION_GROUPS}
    mapping["Other"] = []
    for position in positions:
        label = clean_label(position)
        if not label:
            continue
        group = position_group(label)
        if label not in mapping.setdefault(group, []):
            mapping[group].append(label)
    for group in mapping:
        mapping[group].sort()
    return {group: entries for group, entries in mapping.items() if entries}


def unique_labels(positions: Iterable[str]) -> List[str]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen order."""
    seen: Set[str] = set()
    labels: List[str] = []
    for position in positions:
        label = clean_label(position)
        key = normalize_position(label)
        if not key or key in seen:
            continue
        seen.add(key)
        labels.append(label)
    return labels


class CapabilityCatalog:
    """Known position labels plus the positions each staff member can fill.

    The catalog is built once per request from the policy and the staff
    records, then handed to the resolver and the conflict checker.
    """

    def __init__(
        self,
        positions: Iterable[str] = (),
        staff_positions: Optional[Mapping[int, Iterable[str]]] = None,
    ) -> None:
        self._labels: Dict[str, str] = {}
        for label in unique_labels(positions):
            self._labels[normalize_position(label)] = label
        self._staff: Dict[int, Set[str]] = {}
        for staff_id, labels in (staff_positions or {}).items():
            self._staff[int(staff_id)] = {normalize_position(label) for label in labels if normalize_position(label)}

    @property
    def positions(self) -> List[str]:
        return list(self._labels.values())

    def canonical(self, position: str) -> str:
        label = clean_label(position)
        return self._labels.get(normalize_position(label), label)

    def knows_position(self, position: str) -> bool:
        return normalize_position(position) in self._labels

    def has_staff(self, staff_id: int) -> bool:
        return staff_id in self._staff

    def is_qualified(self, staff_id: int, position: str) -> bool:
        return normalize_position(position) in self._staff.get(staff_id, set())

