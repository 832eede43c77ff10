from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker

from positions import clean_label, unique_labels


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
STAFF_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'staff.db').as_posix()}"
CATERING_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'catering.db').as_posix()}"
STAFF_STATUS_CHOICES = {"active", "inactive"}

UTC = datetime.timezone.utc


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def _load_json_list(raw: Optional[str]) -> List[Any]:
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


class StaffBase(DeclarativeBase):
    """Standalone metadata for staff tables living in staff.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for rules, add-ons, events and policies living in catering.db."""

    pass


class Staff(StaffBase):
    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    positionsJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def position_list(self) -> List[str]:
        return [clean_label(str(label)) for label in _load_json_list(self.positionsJSON) if clean_label(str(label))]

    @position_list.setter
    def position_list(self, positions: Iterable[str]) -> None:
        self.positionsJSON = json.dumps(sorted(unique_labels(positions)))


class StaffingRule(Base):
    __tablename__ = "staffing_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    min_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    requiredJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="[]")
    optionalJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="[]")
    extraJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="[]")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def required_positions(self) -> List[Dict[str, Any]]:
        return _load_json_list(self.requiredJSON)

    @required_positions.setter
    def required_positions(self, entries: Iterable[Dict[str, Any]]) -> None:
        self.requiredJSON = json.dumps(list(entries))

    @property
    def optional_positions(self) -> List[Dict[str, Any]]:
        return _load_json_list(self.optionalJSON)

    @optional_positions.setter
    def optional_positions(self, entries: Iterable[Dict[str, Any]]) -> None:
        self.optionalJSON = json.dumps(list(entries))

    @property
    def extra_conditions(self) -> List[Dict[str, Any]]:
        return _load_json_list(self.extraJSON)

    @extra_conditions.setter
    def extra_conditions(self, entries: Iterable[Dict[str, Any]]) -> None:
        self.extraJSON = json.dumps(list(entries))


class AddOn(Base):
    __tablename__ = "add_ons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    positionsJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_add_ons_name"),)

    @property
    def associated_positions(self) -> List[str]:
        return [clean_label(str(label)) for label in _load_json_list(self.positionsJSON) if clean_label(str(label))]

    @associated_positions.setter
    def associated_positions(self, positions: Iterable[str]) -> None:
        self.positionsJSON = json.dumps(unique_labels(positions))


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    date: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    venue_id: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    client_id: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False)
    addOnJSON: Mapped[str] = mapped_column(String(1000), nullable=False, default="[]")
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    positions: Mapped[List["EventPosition"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventPosition.sort_order",
    )

    @property
    def add_on_ids(self) -> List[int]:
        ids: List[int] = []
        for value in _load_json_list(self.addOnJSON):
            try:
                ids.append(int(value))
            except (TypeError, ValueError):
                continue
        return ids

    @add_on_ids.setter
    def add_on_ids(self, values: Iterable[int]) -> None:
        ids: List[int] = []
        for value in values:
            if int(value) not in ids:
                ids.append(int(value))
        self.addOnJSON = json.dumps(ids)

    @property
    def instant(self) -> datetime.datetime:
        return ensure_aware(self.date)


class EventPosition(Base):
    __tablename__ = "event_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[str] = mapped_column(String(80), nullable=False)
    required_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assignedJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")

    event: Mapped[Event] = relationship(back_populates="positions")

    __table_args__ = (UniqueConstraint("event_id", "position", name="uq_event_position_label"),)

    @property
    def assigned_staff(self) -> List[int]:
        staff: List[int] = []
        for value in _load_json_list(self.assignedJSON):
            try:
                staff.append(int(value))
            except (TypeError, ValueError):
                continue
        return staff

    @assigned_staff.setter
    def assigned_staff(self, values: Iterable[int]) -> None:
        self.assignedJSON = json.dumps([int(value) for value in values])


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_policies_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Event")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


staff_engine = create_engine(
    STAFF_DATABASE_URL,
    echo=False,
    future=True,
    connect_args={"check_same_thread": False},
)
catering_engine = create_engine(
    CATERING_DATABASE_URL,
    echo=False,
    future=True,
    connect_args={"check_same_thread": False},
)
SessionLocal = sessionmaker(bind=catering_engine, expire_on_commit=False, future=True)
StaffSessionLocal = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    StaffBase.metadata.create_all(staff_engine)
    Base.metadata.create_all(catering_engine)


def _coerce_staff_session(session):
    """Return (staff_session, should_close) ensuring we talk to the staff database."""
    if session is None:
        return StaffSessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is catering_engine:
        return StaffSessionLocal(), True
    return session, False


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def get_event(session, event_id: int) -> Optional[Event]:
    stmt = select(Event).options(selectinload(Event.positions)).where(Event.id == event_id)
    return session.scalars(stmt).first()


def list_events(
    session,
    *,
    archived: Optional[bool] = False,
    start: Optional[datetime.datetime] = None,
    end: Optional[datetime.datetime] = None,
    exclude_id: Optional[int] = None,
) -> List[Event]:
    """Return events ordered by date; `start` is inclusive and `end` exclusive."""
    stmt = select(Event).options(selectinload(Event.positions)).order_by(Event.date.asc(), Event.id.asc())
    if archived is not None:
        stmt = stmt.where(Event.is_archived == archived)
    if start is not None:
        stmt = stmt.where(Event.date >= ensure_aware(start))
    if end is not None:
        stmt = stmt.where(Event.date < ensure_aware(end))
    if exclude_id is not None:
        stmt = stmt.where(Event.id != exclude_id)
    return list(session.scalars(stmt))


def list_staff(staff_session=None, only_active: bool = True) -> List[Dict[str, Any]]:
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        stmt = select(Staff)
        if only_active:
            stmt = stmt.where(Staff.status == "active")
        stmt = stmt.order_by(Staff.full_name.asc())
        return [
            {
                "id": member.id,
                "name": member.full_name,
                "positions": member.position_list,
                "status": member.status,
            }
            for member in staff_session.scalars(stmt)
        ]
    finally:
        if close_session:
            staff_session.close()


def staff_capabilities(staff_session=None, only_active: bool = True) -> Dict[int, List[str]]:
    return {entry["id"]: entry["positions"] for entry in list_staff(staff_session, only_active=only_active)}


def upsert_staff(staff_session, staff: Dict[str, Any]) -> int:
    full_name = (staff.get("full_name") or staff.get("name") or "").strip()
    if not full_name:
        raise ValueError("Staff name is required.")
    status = (staff.get("status") or "active").strip().lower()
    if status not in STAFF_STATUS_CHOICES:
        raise ValueError(f"Unsupported staff status '{status}'.")
    staff_session, close_session = _coerce_staff_session(staff_session)
    try:
        staff_id = staff.get("id")
        if staff_id:
            member = staff_session.get(Staff, staff_id)
            if not member:
                raise ValueError(f"Staff with id {staff_id} was not found.")
        else:
            member = Staff(full_name=full_name)
            staff_session.add(member)
        member.full_name = full_name
        member.position_list = [str(position) for position in staff.get("positions") or []]
        member.status = status
        staff_session.commit()
        staff_session.refresh(member)
        return member.id
    finally:
        if close_session:
            staff_session.close()


def event_to_dict(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "date": event.instant,
        "venue_id": event.venue_id,
        "client_id": event.client_id,
        "guest_count": event.guest_count,
        "add_on_ids": event.add_on_ids,
        "is_archived": bool(event.is_archived),
        "positions": [
            {
                "position": slot.position,
                "required_count": slot.required_count,
                "assigned_staff": slot.assigned_staff,
            }
            for slot in event.positions
        ],
    }


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Event",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
