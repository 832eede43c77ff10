from __future__ import annotations

import copy
import datetime
import json
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select

from database import Policy, staff_capabilities
from policy_defaults import BASELINE_POLICY, DEFAULT_POLICY_NAME, build_default_policy
from positions import CapabilityCatalog, unique_labels


def get_active_policy(session) -> Optional[Policy]:
    stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
    return session.scalars(stmt).first()


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    existing: Optional[Policy] = session.execute(select(Policy).where(Policy.name == name)).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    if existing:
        existing.paramsJSON = json.dumps(payload)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = datetime.datetime.now(datetime.timezone.utc)
        session.commit()
        session.refresh(existing)
        return existing
    policy = Policy(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=datetime.datetime.now(datetime.timezone.utc),
    )
    session.add(policy)
    session.commit()
    session.refresh(policy)
    return policy


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a normalized dict."""
    if conn is None:
        return _normalize_policy({})
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _normalize_policy(policy: Dict) -> Dict:
    """Fill missing keys from the baseline and coerce values into usable types."""
    normalized = copy.deepcopy(policy) if isinstance(policy, dict) else {}
    normalized.setdefault("name", DEFAULT_POLICY_NAME)
    try:
        limit = int(normalized.get("daily_event_limit", BASELINE_POLICY["daily_event_limit"]))
    except (TypeError, ValueError):
        limit = BASELINE_POLICY["daily_event_limit"]
    normalized["daily_event_limit"] = max(1, limit)
    zone_name = str(normalized.get("business_timezone") or BASELINE_POLICY["business_timezone"])
    try:
        ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone_name = BASELINE_POLICY["business_timezone"]
    normalized["business_timezone"] = zone_name
    positions = normalized.get("positions")
    if not isinstance(positions, list) or not unique_labels(str(label) for label in positions):
        positions = list(BASELINE_POLICY["positions"])
    normalized["positions"] = unique_labels(str(label) for label in positions)
    return normalized


def ensure_default_policy(session_factory) -> None:
    with session_factory() as session:
        if get_active_policy(session):
            return
        upsert_policy(session, DEFAULT_POLICY_NAME, build_default_policy(), edited_by="system")


def daily_event_limit(policy: Dict[str, Any]) -> int:
    return int(_normalize_policy(policy)["daily_event_limit"])


def business_timezone(policy: Dict[str, Any]) -> ZoneInfo:
    return ZoneInfo(_normalize_policy(policy)["business_timezone"])


def position_labels(policy: Dict[str, Any]) -> List[str]:
    return list(_normalize_policy(policy)["positions"])


def _save_active(session, params: Dict[str, Any], edited_by: str) -> Dict[str, Any]:
    policy = get_active_policy(session)
    name = policy.name if policy else params.get("name", DEFAULT_POLICY_NAME)
    upsert_policy(session, name, params, edited_by=edited_by)
    return params


def set_daily_event_limit(session, limit: int, *, edited_by: str = "system") -> Dict[str, Any]:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise TypeError("Daily event limit must be an integer.")
    if limit < 1:
        raise ValueError("Daily event limit must be at least 1.")
    params = load_active_policy(session)
    params["daily_event_limit"] = limit
    return _save_active(session, params, edited_by)


def set_position_labels(session, positions: Iterable[str], *, edited_by: str = "system") -> Dict[str, Any]:
    labels = unique_labels(str(label) for label in positions)
    if not labels:
        raise ValueError("At least one position label is required.")
    params = load_active_policy(session)
    params["positions"] = labels
    return _save_active(session, params, edited_by)


def build_capability_catalog(session, staff_session=None) -> CapabilityCatalog:
    """Snapshot the policy's position labels and every active staff member's capabilities."""
    policy = load_active_policy(session)
    return CapabilityCatalog(position_labels(policy), staff_capabilities(staff_session))
