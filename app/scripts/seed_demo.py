from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import SessionLocal, Staff, StaffSessionLocal, init_database
from policy import ensure_default_policy, load_active_policy, position_labels
from positions import normalize_position
import rules


STAFF: List[Dict] = [
    {"name": "Ava Martinez", "positions": ["Server", "Host"]},
    {"name": "Ben Okafor", "positions": ["Server", "Food Runner"]},
    {"name": "Chloe Nguyen", "positions": ["Server", "Busser"]},
    {"name": "Diego Alvarez", "positions": ["Bartender", "Barback"]},
    {"name": "Ella Fischer", "positions": ["Bartender", "Server"]},
    {"name": "Farah Haddad", "positions": ["Chef", "Line Cook"]},
    {"name": "Gus Patel", "positions": ["Line Cook", "Prep Cook", "Dishwasher"]},
    {"name": "Hana Suzuki", "positions": ["Event Captain", "Server"]},
    {"name": "Ian Walsh", "positions": ["Event Manager", "Event Captain"]},
    {"name": "Jade Moreau", "positions": ["Server"], "status": "inactive"},
]

ADD_ONS: List[Dict] = [
    {"name": "Bar", "associated_positions": ["Bartender"]},
    {"name": "Carving Station", "associated_positions": ["Chef"]},
    {"name": "Coffee Service", "associated_positions": ["Server"]},
]

# Extra conditions reference add-ons by name here and are resolved to ids at seed time.
RULES: List[Dict] = [
    {
        "min_guests": 1,
        "max_guests": 49,
        "required_positions": [{"position": "Server", "count": 2}, {"position": "Event Captain", "count": 1}],
        "extra_conditions": [],
    },
    {
        "min_guests": 50,
        "max_guests": 150,
        "required_positions": [
            {"position": "Server", "count": 4},
            {"position": "Event Captain", "count": 1},
            {"position": "Line Cook", "count": 1},
        ],
        "optional_positions": [{"position": "Busser", "count": 1}],
        "extra_conditions": [{"add_on": "Bar", "position": "Server", "count": 1}],
    },
    {
        "min_guests": 151,
        "max_guests": 400,
        "required_positions": [
            {"position": "Server", "count": 8},
            {"position": "Event Captain", "count": 1},
            {"position": "Event Manager", "count": 1},
            {"position": "Line Cook", "count": 2},
            {"position": "Dishwasher", "count": 1},
        ],
        "optional_positions": [{"position": "Busser", "count": 2}],
        "extra_conditions": [
            {"add_on": "Bar", "position": "Barback", "count": 1},
            {"add_on": "Bar", "position": "Server", "count": 2},
        ],
    },
]


def seed_staff() -> None:
    known = {normalize_position(label) for label in position_labels(load_active_policy(SessionLocal))}
    created = refreshed = 0
    with StaffSessionLocal() as session:
        for entry in STAFF:
            positions = [label for label in entry["positions"] if normalize_position(label) in known]
            missing = sorted(set(entry["positions"]) - set(positions))
            if missing:
                print(f"[seed] Skipping unknown positions for {entry['name']}: {', '.join(missing)}")
            member = session.scalars(select(Staff).where(Staff.full_name == entry["name"])).first()
            if not member:
                member = Staff(full_name=entry["name"])
                session.add(member)
                created += 1
            else:
                refreshed += 1
            member.position_list = positions
            member.status = entry.get("status", "active")
        session.commit()
    print(f"[seed] Staff: created {created}, refreshed {refreshed}.")


def seed_add_ons() -> Dict[str, int]:
    ids: Dict[str, int] = {}
    with SessionLocal() as session:
        existing = {add_on.name: add_on for add_on in rules.list_add_ons(session)}
        for entry in ADD_ONS:
            add_on = existing.get(entry["name"])
            if add_on is None:
                add_on = rules.create_add_on(session, entry)
            ids[add_on.name] = add_on.id
    print(f"[seed] Add-ons available: {', '.join(sorted(ids))}.")
    return ids


def seed_rules(add_on_ids: Dict[str, int]) -> None:
    created = skipped = 0
    with SessionLocal() as session:
        for entry in RULES:
            payload = dict(entry)
            payload["extra_conditions"] = [
                {"add_on_id": add_on_ids[condition["add_on"]], "position": condition["position"], "count": condition["count"]}
                for condition in entry.get("extra_conditions", [])
            ]
            outcome = rules.create_rule(session, payload)
            if outcome.ok:
                created += 1
            else:
                skipped += 1
                print(f"[seed] Skipping rule {entry['min_guests']}-{entry['max_guests']}: {outcome.message}")
    print(f"[seed] Rules: created {created}, skipped {skipped}.")


def seed_demo() -> None:
    init_database()
    ensure_default_policy(SessionLocal)
    seed_staff()
    seed_rules(seed_add_ons())
    print("Seed complete.")


if __name__ == "__main__":
    seed_demo()
