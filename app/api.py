"""FastAPI request layer over the booking ledger.

Handlers translate JSON payloads into ledger calls and map typed conflicts
onto HTTP status codes. Successful writes are appended to the audit log.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

# Ensure flat absolute imports (e.g., "import database") resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from conflicts import Conflict, ConflictKind, Outcome  # noqa: E402
from database import (  # noqa: E402
    SessionLocal,
    StaffSessionLocal,
    init_database,
    list_staff,
    record_audit_log,
    upsert_staff,
)
from ledger import BookingLedger  # noqa: E402
from policy import ensure_default_policy, load_active_policy, position_labels  # noqa: E402
from positions import grouped_positions  # noqa: E402
import rules  # noqa: E402
from validation import validate_bookings  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_policy(SessionLocal)
    logger.info("Catering staffing API ready")
    yield


app = FastAPI(title="Catering Staffing API", version="0.1", lifespan=lifespan)
_ledger = BookingLedger()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_staff_db():
    db = StaffSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ledger() -> BookingLedger:
    return _ledger


def _parse_date(value: Optional[str], field: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


def _parse_instant(value: Any, field: str = "date") -> datetime.datetime:
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an ISO-8601 timestamp")


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return (str((payload or {}).get("actor") or "api")).strip() or "api"


def _pick(payload: Dict[str, Any], snake: str, camel: str) -> Any:
    return payload[snake] if snake in payload else payload.get(camel)


def _event_payload(payload: Dict[str, Any], *, partial: bool) -> Dict[str, Any]:
    """Accept camelCase or snake_case event fields and parse the timestamp."""
    fields: Dict[str, Any] = {}
    for snake, camel in (
        ("name", "name"),
        ("venue_id", "venueId"),
        ("client_id", "clientId"),
        ("guest_count", "guestCount"),
        ("add_on_ids", "addOnIds"),
    ):
        if snake in payload or camel in payload:
            fields[snake] = _pick(payload, snake, camel)
    if "date" in payload or not partial:
        fields["date"] = _parse_instant(payload.get("date"))
    return fields


def _raise_for(outcome: Outcome) -> Any:
    if outcome.ok:
        return outcome.value
    status = 404 if outcome.kind == ConflictKind.UNKNOWN_ENTITY else 409
    raise HTTPException(status_code=status, detail=outcome.to_dict())


def _call(operation, *args, **kwargs) -> Any:
    try:
        return operation(*args, **kwargs)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _audit(
    db: Session,
    actor: str,
    action: str,
    target_type: str,
    target_id: Optional[int],
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    record_audit_log(db, user_id=actor, action=action, target_type=target_type, target_id=target_id, payload=payload)


def _respond(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(content), status_code=status_code)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# Staffing rules and add-ons


@app.get("/api/v1/staffing-rules")
def list_staffing_rules(db=Depends(get_db)) -> JSONResponse:
    return _respond({"rules": [rules.rule_to_dict(rule) for rule in rules.list_rules(db)]})


@app.post("/api/v1/staffing-rules")
def create_staffing_rule(payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    rule = _raise_for(_call(ledger.create_rule, payload))
    _audit(db, _actor(payload), "RULE_CREATE", "StaffingRule", rule["id"], rule)
    return _respond(rule, status_code=201)


@app.put("/api/v1/staffing-rules/{rule_id}")
def update_staffing_rule(
    rule_id: int, payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)
) -> JSONResponse:
    rule = _raise_for(_call(ledger.update_rule, rule_id, payload))
    _audit(db, _actor(payload), "RULE_UPDATE", "StaffingRule", rule_id, rule)
    return _respond(rule)


@app.delete("/api/v1/staffing-rules/{rule_id}")
def delete_staffing_rule(rule_id: int, db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    _raise_for(ledger.delete_rule(rule_id))
    _audit(db, "api", "RULE_DELETE", "StaffingRule", rule_id)
    return _respond({"deleted": rule_id})


@app.get("/api/v1/add-ons")
def list_add_ons(db=Depends(get_db)) -> JSONResponse:
    return _respond({"add_ons": [rules.add_on_to_dict(add_on) for add_on in rules.list_add_ons(db)]})


@app.post("/api/v1/add-ons")
def create_add_on(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    add_on = rules.add_on_to_dict(_call(rules.create_add_on, db, payload))
    _audit(db, _actor(payload), "ADDON_CREATE", "AddOn", add_on["id"], add_on)
    return _respond(add_on, status_code=201)


@app.put("/api/v1/add-ons/{add_on_id}")
def update_add_on(add_on_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    add_on = rules.add_on_to_dict(_raise_for(_call(rules.update_add_on, db, add_on_id, payload)))
    _audit(db, _actor(payload), "ADDON_UPDATE", "AddOn", add_on_id, add_on)
    return _respond(add_on)


@app.delete("/api/v1/add-ons/{add_on_id}")
def delete_add_on(add_on_id: int, db=Depends(get_db)) -> JSONResponse:
    _raise_for(rules.delete_add_on(db, add_on_id))
    _audit(db, "api", "ADDON_DELETE", "AddOn", add_on_id)
    return _respond({"deleted": add_on_id})


# Positions and staff


@app.get("/api/v1/positions")
def list_positions(db=Depends(get_db)) -> JSONResponse:
    labels = position_labels(load_active_policy(db))
    return _respond({"positions": labels, "groups": grouped_positions(labels)})


@app.put("/api/v1/positions")
def replace_positions(payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    positions = payload.get("positions")
    if not isinstance(positions, list):
        raise HTTPException(status_code=400, detail="positions must be a list of labels")
    actor = _actor(payload)
    labels = _call(ledger.set_position_labels, positions, edited_by=actor)
    _audit(db, actor, "POSITIONS_EDIT", "Policy", None, {"positions": labels})
    return _respond({"positions": labels, "groups": grouped_positions(labels)})


@app.post("/api/v1/positions/resolve")
def resolve_positions(payload: Dict[str, Any], ledger=Depends(get_ledger)) -> JSONResponse:
    guest_count = _pick(payload, "guest_count", "guestCount")
    add_on_ids = _pick(payload, "add_on_ids", "addOnIds") or []
    slots = _call(ledger.resolve, guest_count, add_on_ids)
    return _respond({"positions": [slot.to_dict() for slot in slots]})


@app.get("/api/v1/staff")
def staff_directory(include_inactive: bool = Query(False), staff_db=Depends(get_staff_db)) -> JSONResponse:
    return _respond({"staff": list_staff(staff_db, only_active=not include_inactive)})


@app.post("/api/v1/staff")
def save_staff(payload: Dict[str, Any], db=Depends(get_db), staff_db=Depends(get_staff_db)) -> JSONResponse:
    staff_id = _call(upsert_staff, staff_db, payload)
    _audit(db, _actor(payload), "STAFF_UPSERT", "Staff", staff_id, {"positions": payload.get("positions") or []})
    return _respond({"id": staff_id})


@app.get("/api/v1/assignments")
def all_assignments(ledger=Depends(get_ledger)) -> JSONResponse:
    grouped = ledger.staff_assignments()
    return _respond({"staff": [{"staff_id": staff_id, "events": events} for staff_id, events in grouped.items()]})


@app.get("/api/v1/staff/{staff_id}/assignments")
def staff_assignments(staff_id: int, ledger=Depends(get_ledger)) -> JSONResponse:
    return _respond({"staff_id": staff_id, "events": ledger.staff_assignments(staff_id)[staff_id]})


# Events and assignments


@app.post("/api/v1/events")
def create_event(payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    event = _raise_for(_call(ledger.create_event, _event_payload(payload, partial=False)))
    _audit(db, _actor(payload), "EVENT_CREATE", "Event", event["id"], {"date": event["date"]})
    return _respond(event, status_code=201)


@app.get("/api/v1/events/archived")
def archived_events(ledger=Depends(get_ledger)) -> JSONResponse:
    return _respond({"events": ledger.archived_events()})


@app.get("/api/v1/events/{event_id}")
def get_event(event_id: int, ledger=Depends(get_ledger)) -> JSONResponse:
    event = ledger.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=Conflict.unknown("Event", event_id).to_dict())
    return _respond(event)


@app.put("/api/v1/events/{event_id}")
def update_event(
    event_id: int, payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)
) -> JSONResponse:
    result = _raise_for(_call(ledger.update_event, event_id, _event_payload(payload, partial=True)))
    dropped = [{"position": position, "staff_id": staff_id} for position, staff_id in result["dropped"]]
    _audit(db, _actor(payload), "EVENT_UPDATE", "Event", event_id, {"dropped": dropped})
    return _respond({"event": result["event"], "dropped": dropped})


@app.delete("/api/v1/events/{event_id}")
def delete_event(event_id: int, db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    _raise_for(ledger.delete_event(event_id))
    _audit(db, "api", "EVENT_DELETE", "Event", event_id)
    return _respond({"deleted": event_id})


def _staff_id(payload: Dict[str, Any]) -> int:
    value = _pick(payload, "staff_id", "staffId")
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail="staff_id must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="staff_id must be an integer")


@app.post("/api/v1/events/{event_id}/assignments")
def assign_staff(
    event_id: int, payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)
) -> JSONResponse:
    position = payload.get("position")
    if not position:
        raise HTTPException(status_code=400, detail="position is required")
    staff_id = _staff_id(payload)
    slot_index = _pick(payload, "slot_index", "slotIndex")
    if slot_index is not None:
        try:
            slot_index = int(slot_index)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="slot_index must be an integer")
    result = _raise_for(ledger.assign_staff(event_id, str(position), staff_id, slot_index=slot_index))
    if result["changed"]:
        _audit(
            db,
            _actor(payload),
            "STAFF_ASSIGN",
            "Event",
            event_id,
            {"position": position, "staff_id": staff_id, "slot_index": result["slot_index"]},
        )
    return _respond(result)


@app.delete("/api/v1/events/{event_id}/assignments")
def remove_staff(
    event_id: int,
    staff_id: int = Query(...),
    position: Optional[str] = Query(None),
    db=Depends(get_db),
    ledger=Depends(get_ledger),
) -> JSONResponse:
    removed = _raise_for(ledger.remove_staff(event_id, staff_id, position))
    if removed:
        _audit(db, "api", "STAFF_REMOVE", "Event", event_id, {"staff_id": staff_id, "positions": removed})
    return _respond({"event_id": event_id, "staff_id": staff_id, "removed_from": removed})


# Views and settings


@app.get("/api/v1/dashboard")
def dashboard(ledger=Depends(get_ledger)) -> JSONResponse:
    return _respond({"clients": ledger.dashboard()})


@app.get("/api/v1/calendar")
def calendar(start: str = Query(...), end: str = Query(...), ledger=Depends(get_ledger)) -> JSONResponse:
    days = _call(ledger.calendar, _parse_date(start, "start"), _parse_date(end, "end"))
    return _respond({"days": days})


@app.get("/api/v1/daily-count")
def daily_count(date: str = Query(...), ledger=Depends(get_ledger)) -> JSONResponse:
    return _respond(_call(ledger.daily_count, _parse_instant(date)))


@app.get("/api/v1/settings/daily-event-limit")
def get_daily_event_limit(ledger=Depends(get_ledger)) -> JSONResponse:
    return _respond({"daily_event_limit": ledger.daily_limit()})


@app.put("/api/v1/settings/daily-event-limit")
def put_daily_event_limit(payload: Dict[str, Any], db=Depends(get_db), ledger=Depends(get_ledger)) -> JSONResponse:
    actor = _actor(payload)
    limit = _call(ledger.set_daily_event_limit, _pick(payload, "daily_event_limit", "limit"), edited_by=actor)
    _audit(db, actor, "LIMIT_EDIT", "Policy", None, {"daily_event_limit": limit})
    return _respond({"daily_event_limit": limit})


@app.get("/api/v1/validation")
def validation_report(
    start: str = Query(...),
    end: str = Query(...),
    db=Depends(get_db),
    staff_db=Depends(get_staff_db),
) -> JSONResponse:
    report = _call(
        validate_bookings, db, _parse_date(start, "start"), _parse_date(end, "end"), staff_session=staff_db
    )
    return _respond(report)
