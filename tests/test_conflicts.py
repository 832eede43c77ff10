from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path
from zoneinfo import ZoneInfo

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from conflicts import (  # noqa: E402
    ConflictKind,
    SameDayExclusivity,
    business_day,
    can_assign,
    can_create_event,
    check_rule_range,
)
from positions import CapabilityCatalog  # noqa: E402

UTC = datetime.timezone.utc
DAY = datetime.datetime(2024, 6, 1, 18, 0, tzinfo=UTC)


def _event(event_id: int, date: datetime.datetime, positions, *, archived: bool = False):
    return {
        "id": event_id,
        "date": date,
        "is_archived": archived,
        "positions": [
            {"position": label, "required_count": count, "assigned_staff": list(staff)}
            for label, count, staff in positions
        ],
    }


class CanAssignTests(unittest.TestCase):
    def setUp(self) -> None:
        self.catalog = CapabilityCatalog(
            ["Server", "Bartender", "Chef"],
            {1: ["Server", "Bartender"], 2: ["Chef"], 3: ["Server"]},
        )

    def test_qualified_staff_gets_next_free_slot(self) -> None:
        event = _event(10, DAY, [("Server", 3, [3])])

        outcome = can_assign(event, "Server", 1, self.catalog, [])

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, 1)

    def test_rejects_unqualified_staff(self) -> None:
        event = _event(10, DAY, [("Server", 3, [])])

        outcome = can_assign(event, "Server", 2, self.catalog, [])

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.kind, ConflictKind.NOT_QUALIFIED)

    def test_rejects_second_position_in_same_event(self) -> None:
        event = _event(10, DAY, [("Server", 3, [1]), ("Bartender", 1, [])])

        outcome = can_assign(event, "Bartender", 1, self.catalog, [])

        self.assertEqual(outcome.kind, ConflictKind.ALREADY_ASSIGNED_OTHER_POSITION)
        self.assertEqual(outcome.details["position"], "Server")

    def test_reassigning_same_position_is_idempotent(self) -> None:
        event = _event(10, DAY, [("Server", 3, [3, 1])])

        outcome = can_assign(event, "Server", 1, self.catalog, [])

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, 1)

    def test_full_position_reports_slot_occupied(self) -> None:
        event = _event(10, DAY, [("Server", 1, [3])])

        outcome = can_assign(event, "Server", 1, self.catalog, [])

        self.assertEqual(outcome.kind, ConflictKind.SLOT_OCCUPIED)

    def test_explicit_filled_slot_reports_slot_occupied(self) -> None:
        event = _event(10, DAY, [("Server", 3, [3])])

        outcome = can_assign(event, "Server", 1, self.catalog, [], slot_index=0)

        self.assertEqual(outcome.kind, ConflictKind.SLOT_OCCUPIED)
        self.assertEqual(outcome.details["staff_id"], 3)

    def test_explicit_slot_past_next_open_one_is_rejected(self) -> None:
        event = _event(10, DAY, [("Server", 3, [3])])

        skipped = can_assign(event, "Server", 1, self.catalog, [], slot_index=2)
        next_open = can_assign(event, "Server", 1, self.catalog, [], slot_index=1)

        self.assertEqual(skipped.kind, ConflictKind.SLOT_OCCUPIED)
        self.assertEqual(skipped.details["next_slot_index"], 1)
        self.assertTrue(next_open.ok)
        self.assertEqual(next_open.value, 1)

    def test_same_day_assignment_elsewhere_is_double_booked(self) -> None:
        event = _event(10, DAY, [("Server", 3, [])])
        other = _event(11, DAY.replace(hour=9), [("Bartender", 1, [1])])

        outcome = can_assign(event, "Server", 1, self.catalog, [other])

        self.assertEqual(outcome.kind, ConflictKind.DOUBLE_BOOKED)
        self.assertEqual(outcome.details["event_id"], 11)

    def test_next_day_assignment_is_allowed(self) -> None:
        event = _event(10, DAY, [("Server", 3, [])])
        other = _event(11, DAY + datetime.timedelta(days=1), [("Server", 1, [1])])

        self.assertTrue(can_assign(event, "Server", 1, self.catalog, [other]).ok)

    def test_archived_events_do_not_block(self) -> None:
        event = _event(10, DAY, [("Server", 3, [])])
        other = _event(11, DAY, [("Server", 1, [1])], archived=True)

        self.assertTrue(can_assign(event, "Server", 1, self.catalog, [other]).ok)

    def test_unknown_staff_and_position(self) -> None:
        event = _event(10, DAY, [("Server", 3, [])])

        self.assertEqual(can_assign(event, "Server", 99, self.catalog, []).kind, ConflictKind.UNKNOWN_ENTITY)
        self.assertEqual(can_assign(event, "Host", 1, self.catalog, []).kind, ConflictKind.UNKNOWN_ENTITY)

    def test_qualification_checked_before_double_booking(self) -> None:
        event = _event(10, DAY, [("Chef", 1, [])])
        other = _event(11, DAY, [("Server", 1, [1])])

        outcome = can_assign(event, "Chef", 1, self.catalog, [other])

        self.assertEqual(outcome.kind, ConflictKind.NOT_QUALIFIED)


class ExclusivityTests(unittest.TestCase):
    def test_business_timezone_changes_the_day(self) -> None:
        late_utc = datetime.datetime(2024, 6, 2, 2, 0, tzinfo=UTC)
        exclusivity = SameDayExclusivity(ZoneInfo("America/New_York"))

        self.assertEqual(business_day(late_utc), datetime.date(2024, 6, 2))
        self.assertEqual(exclusivity.day(late_utc), datetime.date(2024, 6, 1))
        self.assertTrue(exclusivity.overlaps(late_utc, DAY))

    def test_window_spans_one_business_day(self) -> None:
        start, end = SameDayExclusivity("UTC").window(DAY)

        self.assertEqual(start, datetime.datetime(2024, 6, 1, tzinfo=UTC))
        self.assertEqual(end, datetime.datetime(2024, 6, 2, tzinfo=UTC))


class CapacityAndRangeTests(unittest.TestCase):
    def test_limit_reached_reports_current_and_limit(self) -> None:
        self.assertTrue(can_create_event(2, 3).ok)
        outcome = can_create_event(3, 3)

        self.assertEqual(outcome.kind, ConflictKind.LIMIT_REACHED)
        self.assertEqual((outcome.details["current"], outcome.details["limit"]), (3, 3))

    def test_rule_ranges_may_touch_but_not_share(self) -> None:
        rules = [{"id": 1, "min_guests": 1, "max_guests": 50}]

        self.assertTrue(check_rule_range(51, 100, rules).ok)
        self.assertEqual(check_rule_range(50, 100, rules).kind, ConflictKind.RULE_RANGE_OVERLAP)
        self.assertTrue(check_rule_range(10, 40, rules, exclude_id=1).ok)


if __name__ == "__main__":
    unittest.main()
