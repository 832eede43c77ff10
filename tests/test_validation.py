from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import Base, Event, EventPosition, Staff, StaffBase  # noqa: E402
from policy import ensure_default_policy, set_daily_event_limit  # noqa: E402
from validation import validate_bookings  # noqa: E402

UTC = datetime.timezone.utc


class BookingValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.catering_engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(self.catering_engine)
        self.staff_engine = create_engine("sqlite:///:memory:", future=True)
        StaffBase.metadata.create_all(self.staff_engine)
        session_factory = sessionmaker(bind=self.catering_engine, expire_on_commit=False, future=True)
        staff_session_factory = sessionmaker(bind=self.staff_engine, expire_on_commit=False, future=True)
        ensure_default_policy(session_factory)
        self.session = session_factory()
        self.staff_session = staff_session_factory()
        self.day = datetime.date(2030, 3, 4)

    def tearDown(self) -> None:
        self.session.close()
        self.staff_session.close()
        self.catering_engine.dispose()
        self.staff_engine.dispose()

    def test_clean_ledger_passes_every_check(self) -> None:
        server = self._add_staff("Ava", ["Server"])
        self._add_event("Lunch", hour=12, positions=[("Server", 1, [server])])

        report = self._report()

        self.assertEqual(report["issues"], [])
        self.assertEqual(report["warnings"], [])
        self.assertTrue(all(check["status"] == "ok" for check in report["checks"]))

    def test_reports_unfilled_slots(self) -> None:
        self._add_event("Gala", hour=18, positions=[("Server", 3, [])])

        report = self._report()

        unfilled = [entry for entry in report["warnings"] if entry["type"] == "unfilled"]
        self.assertEqual(len(unfilled), 1)
        self.assertEqual(unfilled[0]["open_slots"], 3)
        self.assertEqual(self._check(report, "All slots filled?")["status"], "fail")

    def test_reports_unqualified_and_inactive_staff(self) -> None:
        cook = self._add_staff("Gus", ["Line Cook"])
        retired = self._add_staff("Jade", ["Server"], status="inactive")
        self._add_event("Gala", hour=18, positions=[("Server", 2, [cook, retired])])

        types = sorted(issue["type"] for issue in self._report()["issues"])

        self.assertEqual(types, ["position_match", "staff"])

    def test_reports_double_bookings_and_duplicates(self) -> None:
        server = self._add_staff("Ava", ["Server", "Bartender"])
        self._add_event("Brunch", hour=10, positions=[("Server", 1, [server])])
        self._add_event(
            "Gala",
            hour=18,
            positions=[("Server", 1, [server]), ("Bartender", 1, [server])],
        )

        types = sorted(issue["type"] for issue in self._report()["issues"])

        self.assertEqual(types, ["double_booked", "duplicate_assignment"])

    def test_warns_about_positions_missing_from_catalog(self) -> None:
        server = self._add_staff("Ava", ["Server"])
        event = self._add_event(
            "Tasting",
            hour=19,
            positions=[("Server", 1, [server]), ("Sommelier", 1, [])],
        )

        report = self._report()

        unknown = [entry for entry in report["warnings"] if entry["type"] == "unknown_position"]
        self.assertEqual(len(unknown), 1)
        self.assertEqual(unknown[0]["position"], "Sommelier")
        self.assertEqual(unknown[0]["event_id"], event.id)
        self.assertEqual(self._check(report, "Positions in catalog?")["status"], "fail")
        self.assertEqual(report["issues"], [])

    def test_reports_days_over_the_limit(self) -> None:
        set_daily_event_limit(self.session, 1)
        self._add_event("Brunch", hour=10, positions=[])
        self._add_event("Gala", hour=18, positions=[])

        report = self._report()

        capacity = [issue for issue in report["issues"] if issue["type"] == "capacity"]
        self.assertEqual(len(capacity), 1)
        self.assertEqual(capacity[0]["day"], self.day.isoformat())

    def test_archived_events_are_ignored(self) -> None:
        self._add_event("Old", hour=9, positions=[("Server", 2, [])], archived=True)

        report = self._report()

        self.assertEqual(report["event_count"], 0)
        self.assertEqual(self._check(report, "Events booked?")["status"], "fail")

    def test_inverted_range_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            validate_bookings(self.session, self.day, self.day - datetime.timedelta(days=1))

    def _report(self):
        return validate_bookings(self.session, self.day, self.day, staff_session=self.staff_session)

    @staticmethod
    def _check(report, label):
        return next(check for check in report["checks"] if check["label"] == label)

    def _add_staff(self, name: str, positions, status: str = "active") -> int:
        member = Staff(full_name=name, status=status)
        member.position_list = positions
        self.staff_session.add(member)
        self.staff_session.commit()
        return member.id

    def _add_event(self, name: str, *, hour: int, positions, archived: bool = False) -> Event:
        event = Event(
            name=name,
            date=datetime.datetime.combine(self.day, datetime.time(hour), tzinfo=UTC),
            client_id="acme",
            venue_id="hall",
            guest_count=40,
            is_archived=archived,
        )
        for order, (label, count, staff) in enumerate(positions):
            row = EventPosition(position=label, required_count=count, sort_order=order)
            row.assigned_staff = staff
            event.positions.append(row)
        self.session.add(event)
        self.session.commit()
        return event


if __name__ == "__main__":
    unittest.main()
