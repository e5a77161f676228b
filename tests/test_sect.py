from datetime import datetime, timezone

import pytest

from rules.character import create_initial_state
from rules.core import DeterministicRng
from rules.cultivation import calculate_cultivation_exp_gain
from rules.deltas import apply_validated_deltas
from rules.sect import (
    RANK_BENEFITS,
    add_contribution,
    adjust_reputation,
    complete_mission,
    join_sect,
    leave_sect,
    promote,
)
from rules.validation import DeltaValidationError


def _member() -> tuple[dict, list[dict]]:
    state = create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")
    events: list[dict] = []
    join_sect(
        state,
        {"sect": {"id": "thanh_van", "name": "Thanh Vân Tông", "name_en": "Azure Cloud Sect"}},
        events,
        now=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    return state, events


def test_join_sets_membership_and_event() -> None:
    state, events = _member()

    assert state["sect"] == "Thanh Vân Tông"
    assert state["sect_en"] == "Azure Cloud Sect"
    assert state["sect_membership"]["rank"] == "NgoạiMôn"
    assert state["sect_membership"]["reputation"] == 50
    assert events[0]["type"] == "sect_join"


def test_sect_bonus_applies_to_cultivation() -> None:
    state, _ = _member()

    assert calculate_cultivation_exp_gain(state, 100) == 105


def test_promotion_replaces_benefits() -> None:
    state, events = _member()

    promote(state, "ChânTruyền", events)

    assert state["sect_membership"]["benefits"] == RANK_BENEFITS["ChânTruyền"]
    assert events[-1]["data"] == {"oldRank": "NgoạiMôn", "newRank": "ChânTruyền", "sect": "Thanh Vân Tông"}
    with pytest.raises(DeltaValidationError):
        promote(state, "Emperor", events)


def test_contribution_reputation_and_missions_are_bounded() -> None:
    state, events = _member()

    add_contribution(state, -250)
    adjust_reputation(state, 80)
    complete_mission(state, 300, events)

    membership = state["sect_membership"]
    assert membership["contribution"] == 200
    assert membership["reputation"] == 100
    assert membership["missions_completed"] == 1
    assert events[-1]["type"] == "sect_mission"


def test_leave_clears_membership() -> None:
    state, events = _member()

    leave_sect(state, {"reason": "expelled"}, events)

    assert state["sect_membership"] is None
    assert state["sect"] is None
    assert events[-1]["data"]["reason"] == "expelled"
    with pytest.raises(DeltaValidationError):
        add_contribution(state, 10)


@pytest.mark.parametrize(
    "payload",
    [
        {"sect": {"name": "Huyết Ma Tông"}, "benefits": {"cultivation_bonus": "big"}},
        {"sect": {"name": "Huyết Ma Tông"}, "contribution": "plenty"},
        {"sect": {"name": "Huyết Ma Tông"}, "reputation": [90]},
        {"sect": {"name": "Huyết Ma Tông", "tier": 0}},
        {"sect": {"name": "Huyết Ma Tông"}, "benefits": "all of them"},
        {"sect": {"name": 42}},
    ],
)
def test_join_rejects_malformed_payloads(payload: dict) -> None:
    state = create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")

    with pytest.raises(DeltaValidationError):
        join_sect(state, payload, [])

    assert state["sect_membership"] is None


def test_join_clamps_generous_numbers() -> None:
    state = create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")

    join_sect(
        state,
        {"sect": {"name": "Kim Quang Tông"}, "benefits": {"cultivation_bonus": 900}, "reputation": 400},
        [],
    )

    membership = state["sect_membership"]
    assert membership["benefits"]["cultivation_bonus"] == 50
    assert membership["reputation"] == 100
    assert calculate_cultivation_exp_gain(state, 100) == 150


def test_rejected_join_leaves_cultivation_working() -> None:
    state = create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")
    deltas = [
        {"field": "sect.join", "operation": "set", "value": {"sect": {"name": "Huyết Ma Tông"}, "benefits": {"cultivation_bonus": "big"}}},
        {"field": "progress.cultivation_exp", "operation": "add", "value": 40},
    ]

    applied = apply_validated_deltas(state, deltas, DeterministicRng("sect-test"), [])

    assert applied == 1
    assert state["sect_membership"] is None
    assert state["progress"]["cultivation_exp"] == 40
