from __future__ import annotations

import pytest

import rules
from conflicts import ConflictKind


def _rule(low: int, high: int, **extra):
    payload = {
        "min_guests": low,
        "max_guests": high,
        "required_positions": [{"position": "Server", "count": 2}],
    }
    payload.update(extra)
    return payload


def test_adjacent_ranges_are_accepted(memory_db):
    session_factory, _ = memory_db
    with session_factory() as session:
        assert rules.create_rule(session, _rule(1, 50)).ok
        assert rules.create_rule(session, _rule(51, 100)).ok
        assert [(rule.min_guests, rule.max_guests) for rule in rules.list_rules(session)] == [(1, 50), (51, 100)]


def test_overlapping_range_is_rejected(memory_db):
    session_factory, _ = memory_db
    with session_factory() as session:
        rules.create_rule(session, _rule(1, 50))
        outcome = rules.create_rule(session, _rule(50, 80))

        assert not outcome.ok
        assert outcome.kind == ConflictKind.RULE_RANGE_OVERLAP
        assert len(rules.list_rules(session)) == 1


def test_update_excludes_the_rule_itself(memory_db):
    session_factory, _ = memory_db
    with session_factory() as session:
        rule = rules.create_rule(session, _rule(1, 50)).value
        rules.create_rule(session, _rule(51, 100))

        assert rules.update_rule(session, rule.id, _rule(1, 40)).ok
        clash = rules.update_rule(session, rule.id, _rule(1, 60))
        assert clash.kind == ConflictKind.RULE_RANGE_OVERLAP


def test_duplicate_labels_are_merged(memory_db):
    session_factory, _ = memory_db
    payload = _rule(1, 10, required_positions=[{"position": "Server", "count": 2}, {"position": " server ", "count": 1}])
    with session_factory() as session:
        rule = rules.create_rule(session, payload).value

    assert rule.required_positions == [{"position": "Server", "count": 3}]


@pytest.mark.parametrize(
    "payload",
    [
        _rule(10, 5),
        _rule(0, 5),
        _rule(1.5, 5),
        _rule(1, 5, required_positions=[{"position": "Server", "count": 2.5}]),
        _rule(1, 5, required_positions=[]),
        _rule(1, 5, required_positions=[{"position": "Server", "count": 0}]),
        _rule(1, 5, extra_conditions=[{"position": "Server", "count": 1}]),
    ],
)
def test_malformed_rules_raise_value_error(memory_db, payload):
    session_factory, _ = memory_db
    with session_factory() as session:
        with pytest.raises(ValueError):
            rules.create_rule(session, payload)


def test_missing_rule_is_unknown(memory_db):
    session_factory, _ = memory_db
    with session_factory() as session:
        assert rules.delete_rule(session, 404).kind == ConflictKind.UNKNOWN_ENTITY
        assert rules.update_rule(session, 404, _rule(1, 2)).kind == ConflictKind.UNKNOWN_ENTITY


def test_add_on_lifecycle(memory_db):
    session_factory, _ = memory_db
    with session_factory() as session:
        bar = rules.create_add_on(session, {"name": "Bar", "associated_positions": ["Bartender", "bartender"]})
        assert bar.associated_positions == ["Bartender"]

        with pytest.raises(ValueError):
            rules.create_add_on(session, {"name": " bar ", "associated_positions": []})

        updated = rules.update_add_on(session, bar.id, {"name": "Full Bar", "associated_positions": ["Bartender", "Barback"]})
        assert updated.ok
        assert rules.add_on_to_dict(updated.value) == {
            "id": bar.id,
            "name": "Full Bar",
            "associated_positions": ["Bartender", "Barback"],
        }

        assert rules.delete_add_on(session, bar.id).ok
        assert rules.list_add_ons(session) == []
