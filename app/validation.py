from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, List

from database import Event, list_events
from policy import build_capability_catalog, business_timezone, daily_event_limit, load_active_policy
from positions import CapabilityCatalog


def validate_bookings(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    staff_session=None,
) -> Dict[str, Any]:
    """Return validation findings for active events between `start` and `end` inclusive."""
    if end < start:
        raise ValueError("End date must not be before start date.")
    policy = load_active_policy(session)
    zone = business_timezone(policy)
    window_start = datetime.datetime.combine(start, datetime.time.min, tzinfo=zone)
    window_end = datetime.datetime.combine(end + datetime.timedelta(days=1), datetime.time.min, tzinfo=zone)
    events = list_events(session, archived=False, start=window_start, end=window_end)
    catalog = build_capability_catalog(session, staff_session)

    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_capacity_issues(events, daily_event_limit(policy), zone))
    issues.extend(_staff_issues(events, catalog))
    issues.extend(_duplicate_in_event_issues(events))
    issues.extend(_double_booking_issues(events, zone))
    warnings.extend(_unfilled_warnings(events))
    warnings.extend(_unknown_position_warnings(events, catalog))
    checks = _build_validation_checklist(events, issues=issues, warnings=warnings)
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "event_count": len(events),
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def _day(event: Event, zone: datetime.tzinfo) -> datetime.date:
    return event.instant.astimezone(zone).date()


def _event_label(event: Event) -> str:
    return event.name or f"Event {event.id}"


def _capacity_issues(events: List[Event], limit: int, zone: datetime.tzinfo) -> List[Dict[str, Any]]:
    per_day: Dict[datetime.date, List[int]] = defaultdict(list)
    for event in events:
        per_day[_day(event, zone)].append(event.id)
    issues: List[Dict[str, Any]] = []
    for day, ids in sorted(per_day.items()):
        if len(ids) <= limit:
            continue
        issues.append(
            {
                "type": "capacity",
                "severity": "error",
                "day": day.isoformat(),
                "event_ids": ids,
                "message": f"{day.isoformat()} holds {len(ids)} events; the daily limit is {limit}.",
            }
        )
    return issues


def _staff_issues(events: List[Event], catalog: CapabilityCatalog) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for event in events:
        for slot in event.positions:
            for staff_id in slot.assigned_staff:
                if not catalog.has_staff(staff_id):
                    issues.append(
                        {
                            "type": "staff",
                            "severity": "error",
                            "event_id": event.id,
                            "position": slot.position,
                            "staff_id": staff_id,
                            "message": f"{_event_label(event)}: staff {staff_id} in {slot.position} is unknown or inactive.",
                        }
                    )
                elif not catalog.is_qualified(staff_id, slot.position):
                    issues.append(
                        {
                            "type": "position_match",
                            "severity": "error",
                            "event_id": event.id,
                            "position": slot.position,
                            "staff_id": staff_id,
                            "message": f"{_event_label(event)}: staff {staff_id} is not qualified for {slot.position}.",
                        }
                    )
    return issues


def _duplicate_in_event_issues(events: List[Event]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for event in events:
        holders: Dict[int, List[str]] = defaultdict(list)
        for slot in event.positions:
            for staff_id in slot.assigned_staff:
                holders[staff_id].append(slot.position)
        for staff_id, labels in holders.items():
            if len(labels) < 2:
                continue
            issues.append(
                {
                    "type": "duplicate_assignment",
                    "severity": "error",
                    "event_id": event.id,
                    "staff_id": staff_id,
                    "positions": labels,
                    "message": f"{_event_label(event)}: staff {staff_id} holds {len(labels)} slots ({', '.join(labels)}).",
                }
            )
    return issues


def _double_booking_issues(events: List[Event], zone: datetime.tzinfo) -> List[Dict[str, Any]]:
    bookings: Dict[tuple, List[int]] = defaultdict(list)
    for event in events:
        day = _day(event, zone)
        for staff_id in {staff_id for slot in event.positions for staff_id in slot.assigned_staff}:
            bookings[(day, staff_id)].append(event.id)
    issues: List[Dict[str, Any]] = []
    for (day, staff_id), event_ids in sorted(bookings.items()):
        if len(event_ids) < 2:
            continue
        issues.append(
            {
                "type": "double_booked",
                "severity": "error",
                "day": day.isoformat(),
                "staff_id": staff_id,
                "event_ids": event_ids,
                "message": f"Staff {staff_id} works {len(event_ids)} events on {day.isoformat()}.",
            }
        )
    return issues


def _unfilled_warnings(events: List[Event]) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for event in events:
        for slot in event.positions:
            open_slots = slot.required_count - len(slot.assigned_staff)
            if open_slots <= 0:
                continue
            warnings.append(
                {
                    "type": "unfilled",
                    "severity": "warning",
                    "event_id": event.id,
                    "position": slot.position,
                    "open_slots": open_slots,
                    "message": f"{_event_label(event)}: {open_slots} open {slot.position} slot(s).",
                }
            )
    return warnings


def _unknown_position_warnings(events: List[Event], catalog: CapabilityCatalog) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for event in events:
        for slot in event.positions:
            if catalog.knows_position(slot.position):
                continue
            warnings.append(
                {
                    "type": "unknown_position",
                    "severity": "warning",
                    "event_id": event.id,
                    "position": slot.position,
                    "message": f"{_event_label(event)}: {slot.position} is not in the position catalog.",
                }
            )
    return warnings


def _build_validation_checklist(
    events: List[Event],
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Produce a concise, UI-friendly checklist:
    - `status`: ok|fail
    - `label`: human readable prompt
    - `details`: optional context for failures
    """
    checks: List[Dict[str, Any]] = []
    findings = issues + warnings

    def summarize(items: List[Dict[str, Any]], *, limit: int = 5) -> str:
        parts = [str(entry.get("message") or "").strip() for entry in items[:limit]]
        parts = [part for part in parts if part]
        if len(items) > limit:
            parts.append(f"+{len(items) - limit} more")
        return "; ".join(parts)

    def add_check(label: str, ok: bool, *, details: str = "") -> None:
        checks.append(
            {
                "label": label,
                "status": "ok" if ok else "fail",
                "details": details if not ok else "",
            }
        )

    def findings_of(type_name: str) -> List[Dict[str, Any]]:
        return [entry for entry in findings if entry.get("type") == type_name]

    add_check("Events booked?", bool(events), details="No active events in range.")
    for label, type_name in (
        ("Daily limit respected?", "capacity"),
        ("Assigned staff active?", "staff"),
        ("Position matching correct?", "position_match"),
        ("One slot per person per event?", "duplicate_assignment"),
        ("No double bookings?", "double_booked"),
        ("All slots filled?", "unfilled"),
        ("Positions in catalog?", "unknown_position"),
    ):
        matches = findings_of(type_name)
        add_check(label, not matches, details=summarize(matches))
    return checks
