from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from positions import CapabilityCatalog  # noqa: E402
from resolver import PositionSlot, find_rule, regenerate_positions, resolve_positions  # noqa: E402

BAR_ID = 7
RULES = [
    {
        "id": 1,
        "min_guests": 1,
        "max_guests": 49,
        "required_positions": [{"position": "Server", "count": 2}],
        "extra_conditions": [],
    },
    {
        "id": 2,
        "min_guests": 50,
        "max_guests": 150,
        "required_positions": [{"position": "Server", "count": 4}],
        "extra_conditions": [{"add_on_id": BAR_ID, "position": "Server", "count": 1}],
    },
]
ADD_ONS = [
    {"id": BAR_ID, "name": "Bar", "associated_positions": ["Bartender"]},
    {"id": 8, "name": "Carving Station", "associated_positions": ["Chef", "Server"]},
]


def _summary(slots):
    return [(slot.position, slot.required_count) for slot in slots]


class ResolvePositionsTests(unittest.TestCase):
    def test_bar_add_on_adds_extra_server_and_bartender(self) -> None:
        slots = resolve_positions(80, [BAR_ID], RULES, ADD_ONS)

        self.assertEqual(_summary(slots), [("Server", 5), ("Bartender", 1)])
        self.assertTrue(all(slot.assigned_staff == [] for slot in slots))

    def test_no_matching_rule_and_no_add_ons_is_empty(self) -> None:
        self.assertEqual(resolve_positions(500, [], RULES, ADD_ONS), [])

    def test_add_ons_still_apply_without_matching_rule(self) -> None:
        slots = resolve_positions(500, [BAR_ID], RULES, ADD_ONS)

        self.assertEqual(_summary(slots), [("Bartender", 1)])

    def test_unknown_add_on_is_ignored(self) -> None:
        slots = resolve_positions(20, [999], RULES, ADD_ONS)

        self.assertEqual(_summary(slots), [("Server", 2)])

    def test_resolution_is_deterministic(self) -> None:
        first = resolve_positions(120, [8, BAR_ID], RULES, ADD_ONS)
        second = resolve_positions(120, [8, BAR_ID], RULES, ADD_ONS)

        self.assertEqual(_summary(first), _summary(second))
        self.assertEqual(_summary(first), [("Server", 6), ("Chef", 1), ("Bartender", 1)])

    def test_rule_boundaries_are_inclusive(self) -> None:
        self.assertEqual(find_rule(49, RULES)["id"], 1)
        self.assertEqual(find_rule(50, RULES)["id"], 2)
        self.assertEqual(find_rule(150, RULES)["id"], 2)
        self.assertIsNone(find_rule(151, RULES))

    def test_catalog_supplies_canonical_labels(self) -> None:
        rules = [
            {
                "id": 3,
                "min_guests": 1,
                "max_guests": 10,
                "required_positions": [{"position": "  event   captain ", "count": 1}],
            }
        ]
        catalog = CapabilityCatalog(["Event Captain"])

        slots = resolve_positions(5, [], rules, [], catalog)

        self.assertEqual(_summary(slots), [("Event Captain", 1)])


class RegeneratePositionsTests(unittest.TestCase):
    def test_keeps_assignments_that_still_fit(self) -> None:
        previous = [PositionSlot("Server", 4, [1, 2]), PositionSlot("Bartender", 1, [3])]
        resolved = [PositionSlot("Server", 5), PositionSlot("Bartender", 1)]

        result = regenerate_positions(previous, resolved)

        self.assertEqual([slot.assigned_staff for slot in result.positions], [[1, 2], [3]])
        self.assertEqual(result.dropped, [])

    def test_reports_staff_beyond_reduced_count(self) -> None:
        previous = [PositionSlot("Server", 4, [1, 2, 3, 4])]
        resolved = [PositionSlot("Server", 2)]

        result = regenerate_positions(previous, resolved)

        self.assertEqual(result.positions[0].assigned_staff, [1, 2])
        self.assertEqual(result.dropped, [("Server", 3), ("Server", 4)])

    def test_reports_staff_from_removed_positions(self) -> None:
        previous = [PositionSlot("Server", 5, [1]), PositionSlot("Bartender", 1, [9])]
        resolved = [PositionSlot("Server", 4)]

        result = regenerate_positions(previous, resolved)

        self.assertEqual(_summary(result.positions), [("Server", 4)])
        self.assertEqual(result.dropped, [("Bartender", 9)])

    def test_matches_labels_case_insensitively(self) -> None:
        previous = [{"position": "server", "required_count": 2, "assigned_staff": [5]}]
        resolved = [PositionSlot("Server", 2)]

        result = regenerate_positions(previous, resolved)

        self.assertEqual(result.positions[0].position, "Server")
        self.assertEqual(result.positions[0].assigned_staff, [5])


if __name__ == "__main__":
    unittest.main()
