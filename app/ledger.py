from __future__ import annotations

import datetime
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import database as db
from archival import archive_past_events
from conflicts import (
    Conflict,
    ConflictKind,
    ExclusivityPolicy,
    Ok,
    Outcome,
    SameDayExclusivity,
    can_assign,
    can_create_event,
)
from database import Event, EventPosition, ensure_aware, event_to_dict, get_event, list_events
from policy import (
    build_capability_catalog,
    business_timezone,
    daily_event_limit,
    load_active_policy,
    set_daily_event_limit,
    set_position_labels,
)
from positions import CapabilityCatalog, normalize_position
from resolver import PositionSlot, regenerate_positions, resolve_positions
import rules

logger = logging.getLogger(__name__)

EVENT_FIELDS = ("name", "date", "venue_id", "client_id", "guest_count", "add_on_ids")


def _coerce_guest_count(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("Guest count must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("Guest count must be a whole number.")
    try:
        guest_count = int(value)
    except (TypeError, ValueError):
        raise ValueError("Guest count must be an integer.") from None
    if guest_count < 1:
        raise ValueError("Guest count must be at least 1.")
    return guest_count


def _coerce_date(value: Any) -> datetime.datetime:
    if not isinstance(value, datetime.datetime):
        raise TypeError("Event date must be a datetime instance.")
    return ensure_aware(value)


def _coerce_add_on_ids(values: Any) -> List[int]:
    if values is None:
        return []
    if isinstance(values, (str, bytes)):
        raise ValueError("add_on_ids must be a list of ids.")
    ids: List[int] = []
    for value in values:
        try:
            add_on_id = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid add-on id {value!r}.") from None
        if add_on_id not in ids:
            ids.append(add_on_id)
    return ids


def _archived(event: Event) -> Conflict:
    return Conflict(
        ConflictKind.UNKNOWN_ENTITY,
        f"Event {event.id} is archived.",
        {"entity": "Event", "id": event.id, "archived": True},
    )


class BookingLedger:
    """Single-writer entry point for every booking mutation.

    Each mutation evaluates its constraints and writes inside one lock and one
    session, so two requests cannot both pass a same-day check before either
    commits. Reads open their own session and skip the lock.
    """

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        staff_session_factory: Optional[Callable] = None,
        *,
        exclusivity: Optional[ExclusivityPolicy] = None,
    ) -> None:
        self._session_factory = session_factory
        self._staff_session_factory = staff_session_factory
        self._exclusivity = exclusivity
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Sessions and shared lookups

    def _session(self):
        factory = self._session_factory or db.SessionLocal
        return factory()

    def _staff_session(self):
        factory = self._staff_session_factory or db.StaffSessionLocal
        return factory()

    @contextmanager
    def _writing(self) -> Iterator[Any]:
        with self._lock, self._session() as session:
            yield session

    def exclusivity(self, policy: Optional[Dict[str, Any]] = None) -> ExclusivityPolicy:
        if self._exclusivity is not None:
            return self._exclusivity
        return SameDayExclusivity(business_timezone(policy or {}))

    def catalog(self, session) -> CapabilityCatalog:
        with self._staff_session() as staff_session:
            return build_capability_catalog(session, staff_session)

    def _competing_events(
        self,
        session,
        instant: datetime.datetime,
        exclusivity: ExclusivityPolicy,
        *,
        exclude_id: Optional[int] = None,
    ) -> List[Event]:
        start, end = exclusivity.window(instant)
        candidates = list_events(session, archived=False, start=start, end=end, exclude_id=exclude_id)
        return [event for event in candidates if exclusivity.overlaps(instant, event.instant)]

    def _resolve(self, session, guest_count: int, add_on_ids: List[int], catalog: CapabilityCatalog) -> List[PositionSlot]:
        return resolve_positions(guest_count, add_on_ids, rules.list_rules(session), rules.list_add_ons(session), catalog)

    @staticmethod
    def _apply_positions(event: Event, slots: List[PositionSlot]) -> None:
        existing = {normalize_position(row.position): row for row in event.positions}
        rows: List[EventPosition] = []
        for order, slot in enumerate(slots):
            row = existing.pop(normalize_position(slot.position), None)
            if row is None:
                row = EventPosition(position=slot.position)
            row.position = slot.position
            row.required_count = slot.required_count
            row.sort_order = order
            row.assigned_staff = slot.assigned_staff
            rows.append(row)
        event.positions = rows

    # ------------------------------------------------------------------
    # Reads

    def resolve(self, guest_count: int, add_on_ids: Optional[List[int]] = None) -> List[PositionSlot]:
        guest_count = _coerce_guest_count(guest_count)
        with self._session() as session:
            return self._resolve(session, guest_count, _coerce_add_on_ids(add_on_ids), self.catalog(session))

    def get_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            event = get_event(session, event_id)
            return event_to_dict(event) if event else None

    def daily_count(self, instant: datetime.datetime) -> Dict[str, Any]:
        instant = _coerce_date(instant)
        with self._session() as session:
            policy = load_active_policy(session)
            exclusivity = self.exclusivity(policy)
            events = self._competing_events(session, instant, exclusivity)
            return {
                "date": business_day_label(instant, policy),
                "count": len(events),
                "limit": daily_event_limit(policy),
            }

    def can_create_event(self, instant: datetime.datetime) -> Outcome:
        """Dry-run of the daily capacity guard; `create_event` re-checks under the lock."""
        instant = _coerce_date(instant)
        with self._session() as session:
            policy = load_active_policy(session)
            same_day = self._competing_events(session, instant, self.exclusivity(policy))
            return can_create_event(len(same_day), daily_event_limit(policy))

    def can_assign(self, event_id: int, position: str, staff_id: int) -> Outcome:
        """Dry-run of an assignment; `assign_staff` re-checks under the lock."""
        with self._session() as session:
            event = get_event(session, event_id)
            if event is None:
                return Conflict.unknown("Event", event_id)
            if event.is_archived:
                return _archived(event)
            exclusivity = self.exclusivity(load_active_policy(session))
            same_day = self._competing_events(session, event.instant, exclusivity, exclude_id=event.id)
            return can_assign(event, position, staff_id, self.catalog(session), same_day, exclusivity=exclusivity)

    def daily_limit(self) -> int:
        with self._session() as session:
            return daily_event_limit(load_active_policy(session))

    def dashboard(self, now: Optional[datetime.datetime] = None) -> List[Dict[str, Any]]:
        """Sweep past events into the archive, then group active events by client."""
        self.archive_past_events(now)
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        with self._session() as session:
            for event in list_events(session, archived=False):
                grouped.setdefault(event.client_id, []).append(event_to_dict(event))
        return [{"client_id": client_id, "events": events} for client_id, events in grouped.items()]

    def archived_events(self) -> List[Dict[str, Any]]:
        with self._session() as session:
            return [event_to_dict(event) for event in list_events(session, archived=True)]

    def staff_assignments(self, staff_id: Optional[int] = None) -> Dict[int, List[Dict[str, Any]]]:
        """Active events per assigned staff member, in date order.

        Each entry carries the event id, name, date, client, venue and the
        position held. With `staff_id` only that person's key is returned.
        """
        assignments: Dict[int, List[Dict[str, Any]]] = {}
        if staff_id is not None:
            assignments[staff_id] = []
        with self._session() as session:
            for event in list_events(session, archived=False):
                for row in event.positions:
                    for member in row.assigned_staff:
                        if staff_id is not None and member != staff_id:
                            continue
                        assignments.setdefault(member, []).append(
                            {
                                "event_id": event.id,
                                "name": event.name,
                                "date": event.instant,
                                "client_id": event.client_id,
                                "venue_id": event.venue_id,
                                "position": row.position,
                            }
                        )
        return assignments

    def calendar(self, start: datetime.date, end: datetime.date) -> Dict[str, List[Dict[str, Any]]]:
        """Active events grouped by business day for the inclusive date range."""
        if end < start:
            raise ValueError("Calendar end date must not be before start date.")
        with self._session() as session:
            policy = load_active_policy(session)
            zone = business_timezone(policy)
            window_start = datetime.datetime.combine(start, datetime.time.min, tzinfo=zone)
            window_end = datetime.datetime.combine(end + datetime.timedelta(days=1), datetime.time.min, tzinfo=zone)
            days: Dict[str, List[Dict[str, Any]]] = {}
            cursor = start
            while cursor <= end:
                days[cursor.isoformat()] = []
                cursor += datetime.timedelta(days=1)
            for event in list_events(session, archived=False, start=window_start, end=window_end):
                label = business_day_label(event.instant, policy)
                if label in days:
                    days[label].append(event_to_dict(event))
            return days

    # ------------------------------------------------------------------
    # Event lifecycle

    def create_event(self, payload: Dict[str, Any]) -> Outcome:
        """Book an event; the Ok value is the stored event as a dict."""
        instant = _coerce_date(payload.get("date"))
        guest_count = _coerce_guest_count(payload.get("guest_count"))
        add_on_ids = _coerce_add_on_ids(payload.get("add_on_ids"))
        with self._writing() as session:
            policy = load_active_policy(session)
            exclusivity = self.exclusivity(policy)
            same_day = self._competing_events(session, instant, exclusivity)
            outcome = can_create_event(len(same_day), daily_event_limit(policy))
            if not outcome.ok:
                return outcome
            slots = self._resolve(session, guest_count, add_on_ids, self.catalog(session))
            event = Event(
                name=(payload.get("name") or "").strip(),
                date=instant,
                venue_id=str(payload.get("venue_id") or ""),
                client_id=str(payload.get("client_id") or ""),
                guest_count=guest_count,
                is_archived=False,
            )
            event.add_on_ids = add_on_ids
            self._apply_positions(event, slots)
            session.add(event)
            session.commit()
            session.refresh(event)
            return Ok(event_to_dict(event))

    def update_event(self, event_id: int, payload: Dict[str, Any]) -> Outcome:
        """Edit an event, regenerating positions when guest count or add-ons change.

        The Ok value is ``{"event": ..., "dropped": [(position, staff_id), ...]}``
        listing assignments that no longer fit the regenerated positions.
        """
        changes = {key: payload[key] for key in EVENT_FIELDS if key in payload}
        if "date" in changes:
            changes["date"] = _coerce_date(changes["date"])
        if "guest_count" in changes:
            changes["guest_count"] = _coerce_guest_count(changes["guest_count"])
        if "add_on_ids" in changes:
            changes["add_on_ids"] = _coerce_add_on_ids(changes["add_on_ids"])
        with self._writing() as session:
            event = get_event(session, event_id)
            if event is None:
                return Conflict.unknown("Event", event_id)
            if event.is_archived:
                return _archived(event)
            policy = load_active_policy(session)
            exclusivity = self.exclusivity(policy)

            instant = changes.get("date", event.instant)
            moved = not exclusivity.overlaps(instant, event.instant)
            same_day: List[Event] = []
            if moved:
                same_day = self._competing_events(session, instant, exclusivity, exclude_id=event.id)
                outcome = can_create_event(len(same_day), daily_event_limit(policy))
                if not outcome.ok:
                    return outcome

            current = [
                PositionSlot(row.position, row.required_count, row.assigned_staff) for row in event.positions
            ]
            guest_count = changes.get("guest_count", event.guest_count)
            add_on_ids = changes.get("add_on_ids", event.add_on_ids)
            regenerate = guest_count != event.guest_count or add_on_ids != event.add_on_ids
            dropped: List[Tuple[str, int]] = []
            slots = current
            if regenerate:
                resolved = self._resolve(session, guest_count, add_on_ids, self.catalog(session))
                result = regenerate_positions(current, resolved)
                slots, dropped = result.positions, result.dropped

            if moved:
                conflict = _double_booked_on(slots, same_day)
                if conflict is not None:
                    return conflict

            for key in ("name", "venue_id", "client_id"):
                if key in changes:
                    setattr(event, key, str(changes[key] or "").strip())
            event.date = instant
            event.guest_count = guest_count
            event.add_on_ids = add_on_ids
            if regenerate:
                self._apply_positions(event, slots)
            session.commit()
            session.refresh(event)
            if dropped:
                logger.info("Event %s regeneration unassigned %s", event.id, dropped)
            return Ok({"event": event_to_dict(event), "dropped": dropped})

    def delete_event(self, event_id: int) -> Outcome:
        with self._writing() as session:
            event = session.get(Event, event_id)
            if event is None:
                return Conflict.unknown("Event", event_id)
            session.delete(event)
            session.commit()
            return Ok(event_id)

    def archive_past_events(self, now: Optional[datetime.datetime] = None) -> List[int]:
        with self._writing() as session:
            return archive_past_events(session, now)

    # ------------------------------------------------------------------
    # Staff assignment

    def assign_staff(
        self,
        event_id: int,
        position: str,
        staff_id: int,
        *,
        slot_index: Optional[int] = None,
    ) -> Outcome:
        """Place a staff member into a position slot of an event.

        The Ok value is ``{"event": ..., "slot_index": int, "changed": bool}``;
        ``changed`` is False when the person already held that slot.
        """
        with self._writing() as session:
            event = get_event(session, event_id)
            if event is None:
                return Conflict.unknown("Event", event_id)
            if event.is_archived:
                return _archived(event)
            policy = load_active_policy(session)
            exclusivity = self.exclusivity(policy)
            same_day = self._competing_events(session, event.instant, exclusivity, exclude_id=event.id)
            outcome = can_assign(
                event,
                position,
                staff_id,
                self.catalog(session),
                same_day,
                slot_index=slot_index,
                exclusivity=exclusivity,
            )
            if not outcome.ok:
                return outcome
            row = next(row for row in event.positions if normalize_position(row.position) == normalize_position(position))
            assigned = row.assigned_staff
            changed = staff_id not in assigned
            if changed:
                assigned.insert(outcome.value, staff_id)
                row.assigned_staff = assigned
                session.commit()
                session.refresh(event)
            return Ok({"event": event_to_dict(event), "slot_index": outcome.value, "changed": changed})

    def remove_staff(self, event_id: int, staff_id: int, position: Optional[str] = None) -> Outcome:
        """Unassign a staff member; removing someone who is not assigned is a no-op.

        Without `position` the person is removed from whichever slot holds them.
        The Ok value lists the position labels the person was removed from.
        """
        with self._writing() as session:
            event = get_event(session, event_id)
            if event is None:
                return Conflict.unknown("Event", event_id)
            if event.is_archived:
                return _archived(event)
            rows = list(event.positions)
            if position is not None:
                rows = [row for row in rows if normalize_position(row.position) == normalize_position(position)]
                if not rows:
                    return Conflict.unknown("Position", position)
            removed: List[str] = []
            for row in rows:
                assigned = row.assigned_staff
                if staff_id in assigned:
                    row.assigned_staff = [member for member in assigned if member != staff_id]
                    removed.append(row.position)
            if removed:
                session.commit()
            return Ok(removed)

    # ------------------------------------------------------------------
    # Administrative writes

    def set_daily_event_limit(self, limit: int, *, edited_by: str = "system") -> int:
        with self._writing() as session:
            return int(set_daily_event_limit(session, limit, edited_by=edited_by)["daily_event_limit"])

    def set_position_labels(self, positions: List[str], *, edited_by: str = "system") -> List[str]:
        with self._writing() as session:
            return list(set_position_labels(session, positions, edited_by=edited_by)["positions"])

    def create_rule(self, payload: Dict[str, Any]) -> Outcome:
        with self._writing() as session:
            outcome = rules.create_rule(session, payload)
            return Ok(rules.rule_to_dict(outcome.value)) if outcome.ok else outcome

    def update_rule(self, rule_id: int, payload: Dict[str, Any]) -> Outcome:
        with self._writing() as session:
            outcome = rules.update_rule(session, rule_id, payload)
            return Ok(rules.rule_to_dict(outcome.value)) if outcome.ok else outcome

    def delete_rule(self, rule_id: int) -> Outcome:
        with self._writing() as session:
            return rules.delete_rule(session, rule_id)


def business_day_label(instant: datetime.datetime, policy: Dict[str, Any]) -> str:
    return SameDayExclusivity(business_timezone(policy)).day(instant).isoformat()


def _double_booked_on(slots: List[PositionSlot], same_day: List[Event]) -> Optional[Conflict]:
    for slot in slots:
        for staff_id in slot.assigned_staff:
            for other in same_day:
                for row in other.positions:
                    if staff_id in row.assigned_staff:
                        return Conflict(
                            ConflictKind.DOUBLE_BOOKED,
                            f"Staff {staff_id} is already assigned to another event on the new date.",
                            {"staff_id": staff_id, "event_id": other.id, "position": row.position},
                        )
    return None
