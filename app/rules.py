from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

from conflicts import Conflict, Ok, Outcome, check_rule_range
from database import AddOn, StaffingRule
from positions import clean_label, normalize_position


def list_rules(session) -> List[StaffingRule]:
    stmt = select(StaffingRule).order_by(StaffingRule.min_guests.asc(), StaffingRule.id.asc())
    return list(session.scalars(stmt))


def list_add_ons(session) -> List[AddOn]:
    return list(session.scalars(select(AddOn).order_by(AddOn.name.asc(), AddOn.id.asc())))


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{label} must be a whole number.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be an integer.") from None
    if number < 1:
        raise ValueError(f"{label} must be at least 1.")
    return number


def _normalize_requirements(entries: Iterable[Dict[str, Any]], label: str) -> List[Dict[str, Any]]:
    """Validate {position, count} entries and merge repeated labels."""
    merged: Dict[str, Dict[str, Any]] = {}
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise ValueError(f"{label} entries must be objects with position and count.")
        position = clean_label(str(entry.get("position") or ""))
        if not position:
            raise ValueError(f"{label} entries need a position label.")
        count = _positive_int(entry.get("count"), f"{label} count for {position}")
        key = normalize_position(position)
        if key in merged:
            merged[key]["count"] += count
        else:
            merged[key] = {"position": position, "count": count}
    return list(merged.values())


def _normalize_extra_conditions(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    conditions: List[Dict[str, Any]] = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise ValueError("Extra conditions must be objects with add_on_id, position and count.")
        position = clean_label(str(entry.get("position") or ""))
        if not position:
            raise ValueError("Extra conditions need a position label.")
        add_on_id = entry.get("add_on_id", entry.get("addOnId"))
        try:
            add_on_id = int(add_on_id)
        except (TypeError, ValueError):
            raise ValueError("Extra conditions need a numeric add_on_id.") from None
        conditions.append(
            {
                "add_on_id": add_on_id,
                "position": position,
                "count": _positive_int(entry.get("count"), f"Extra condition count for {position}"),
            }
        )
    return conditions


def _validated_rule_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    min_guests = _positive_int(payload.get("min_guests"), "Minimum guests")
    max_guests = _positive_int(payload.get("max_guests"), "Maximum guests")
    if min_guests > max_guests:
        raise ValueError("Minimum guests cannot be greater than maximum guests.")
    required = _normalize_requirements(payload.get("required_positions") or [], "Required position")
    if not required:
        raise ValueError("At least one required position is needed.")
    return {
        "min_guests": min_guests,
        "max_guests": max_guests,
        "required_positions": required,
        "optional_positions": _normalize_requirements(payload.get("optional_positions") or [], "Optional position"),
        "extra_conditions": _normalize_extra_conditions(payload.get("extra_conditions") or []),
    }


def create_rule(session, payload: Dict[str, Any]) -> Outcome:
    """Insert a staffing rule; the Ok value is the new rule."""
    fields = _validated_rule_fields(payload)
    outcome = check_rule_range(fields["min_guests"], fields["max_guests"], list_rules(session))
    if not outcome.ok:
        return outcome
    rule = StaffingRule(min_guests=fields["min_guests"], max_guests=fields["max_guests"])
    rule.required_positions = fields["required_positions"]
    rule.optional_positions = fields["optional_positions"]
    rule.extra_conditions = fields["extra_conditions"]
    session.add(rule)
    session.commit()
    session.refresh(rule)
    return Ok(rule)


def update_rule(session, rule_id: int, payload: Dict[str, Any]) -> Outcome:
    rule = session.get(StaffingRule, rule_id)
    if not rule:
        return Conflict.unknown("StaffingRule", rule_id)
    fields = _validated_rule_fields(payload)
    outcome = check_rule_range(fields["min_guests"], fields["max_guests"], list_rules(session), exclude_id=rule.id)
    if not outcome.ok:
        return outcome
    rule.min_guests = fields["min_guests"]
    rule.max_guests = fields["max_guests"]
    rule.required_positions = fields["required_positions"]
    rule.optional_positions = fields["optional_positions"]
    rule.extra_conditions = fields["extra_conditions"]
    session.commit()
    session.refresh(rule)
    return Ok(rule)


def delete_rule(session, rule_id: int) -> Outcome:
    rule = session.get(StaffingRule, rule_id)
    if not rule:
        return Conflict.unknown("StaffingRule", rule_id)
    session.delete(rule)
    session.commit()
    return Ok(rule_id)


def _validated_add_on_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    name = clean_label(str(payload.get("name") or ""))
    if not name:
        raise ValueError("Add-on name is required.")
    positions = payload.get("associated_positions") or []
    if isinstance(positions, str):
        raise ValueError("associated_positions must be a list of position labels.")
    return {"name": name, "associated_positions": [str(position) for position in positions]}


def _find_add_on_by_name(session, name: str) -> Optional[AddOn]:
    for add_on in list_add_ons(session):
        if normalize_position(add_on.name) == normalize_position(name):
            return add_on
    return None


def create_add_on(session, payload: Dict[str, Any]) -> AddOn:
    fields = _validated_add_on_fields(payload)
    if _find_add_on_by_name(session, fields["name"]):
        raise ValueError(f"An add-on named '{fields['name']}' already exists.")
    add_on = AddOn(name=fields["name"])
    add_on.associated_positions = fields["associated_positions"]
    session.add(add_on)
    session.commit()
    session.refresh(add_on)
    return add_on


def update_add_on(session, add_on_id: int, payload: Dict[str, Any]) -> Outcome:
    add_on = session.get(AddOn, add_on_id)
    if not add_on:
        return Conflict.unknown("AddOn", add_on_id)
    fields = _validated_add_on_fields(payload)
    clash = _find_add_on_by_name(session, fields["name"])
    if clash and clash.id != add_on.id:
        raise ValueError(f"An add-on named '{fields['name']}' already exists.")
    add_on.name = fields["name"]
    add_on.associated_positions = fields["associated_positions"]
    session.commit()
    session.refresh(add_on)
    return Ok(add_on)


def delete_add_on(session, add_on_id: int) -> Outcome:
    """Remove an add-on definition; events keep their snapshotted positions."""
    add_on = session.get(AddOn, add_on_id)
    if not add_on:
        return Conflict.unknown("AddOn", add_on_id)
    session.delete(add_on)
    session.commit()
    return Ok(add_on_id)


def rule_to_dict(rule: StaffingRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "min_guests": rule.min_guests,
        "max_guests": rule.max_guests,
        "required_positions": rule.required_positions,
        "optional_positions": rule.optional_positions,
        "extra_conditions": rule.extra_conditions,
    }


def add_on_to_dict(add_on: AddOn) -> Dict[str, Any]:
    return {"id": add_on.id, "name": add_on.name, "associated_positions": add_on.associated_positions}
