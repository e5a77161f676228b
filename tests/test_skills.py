import pytest

from rules.character import create_initial_state
from rules.core import DeterministicRng
from rules.cultivation import calculate_cultivation_exp_gain
from rules.deltas import apply_validated_deltas
from rules.skills import (
    MAX_SKILLS_PER_TYPE,
    MAX_TECHNIQUES_PER_TYPE,
    AbilityError,
    add_skill,
    add_technique,
    find_skill,
    gain_skill_exp,
    grant_skill_exp,
    manage_ability,
    tick_cooldowns,
)
from rules.validation import DeltaValidationError


def _state() -> dict:
    return create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")


def _skill(skill_id: str, skill_type: str = "attack") -> dict:
    return {"id": skill_id, "name": skill_id, "name_en": skill_id, "type": skill_type, "damage_multiplier": 2.0}


def test_duplicate_skill_is_a_no_op() -> None:
    state = _state()

    assert add_skill(state, _skill("fire_palm")) == "active"
    assert add_skill(state, _skill("fire_palm")) is None
    assert len(state["skills"]) == 1


def test_skill_overflow_goes_to_queue() -> None:
    state = _state()

    placements = [add_skill(state, _skill(f"strike_{i}")) for i in range(MAX_SKILLS_PER_TYPE + 1)]

    assert placements[-1] == "queue"
    assert len(state["skills"]) == MAX_SKILLS_PER_TYPE
    assert state["skill_queue"][0]["id"] == f"strike_{MAX_SKILLS_PER_TYPE}"


def test_skill_level_up_scales_damage() -> None:
    state = _state()
    add_skill(state, _skill("fire_palm"))
    skill = find_skill(state, "fire_palm")

    gained = grant_skill_exp(skill, 350)

    assert gained == 2
    assert skill["level"] == 3
    assert skill["exp"] == 50
    assert skill["max_exp"] == 300
    assert skill["damage_multiplier"] == pytest.approx(2.0 * 1.05**2, abs=1e-4)


def test_gain_exp_is_capped_per_action() -> None:
    state = _state()
    add_skill(state, _skill("fire_palm"))

    gain_skill_exp(state, {"skill_id": "fire_palm", "exp": 500})

    assert find_skill(state, "fire_palm")["exp"] == 50
    with pytest.raises(DeltaValidationError):
        gain_skill_exp(state, {"skill_id": "missing", "exp": 10})


def test_technique_defaults_and_duplicates() -> None:
    state = _state()
    technique = {"id": "flame_art", "name": "Hỏa Quyết", "name_en": "Flame Art", "grade": "Earth", "type": "Main"}

    assert add_technique(state, technique) == "active"
    assert add_technique(state, technique) is None
    stored = state["techniques"][0]
    assert stored["elements"] == []
    assert stored["cultivation_speed_bonus"] == 20


def test_technique_requires_fields() -> None:
    with pytest.raises(DeltaValidationError):
        add_technique(_state(), {"id": "half", "name": "Half"})


def test_cooldowns_tick_down_to_zero() -> None:
    state = _state()
    add_skill(state, _skill("fire_palm"))
    state["skills"][0]["current_cooldown"] = 1

    tick_cooldowns(state)
    tick_cooldowns(state)

    assert state["skills"][0]["current_cooldown"] == 0


def _technique(technique_id: str, technique_type: str = "Main", **extra) -> dict:
    return {
        "id": technique_id,
        "name": technique_id,
        "name_en": technique_id,
        "grade": "Mortal",
        "type": technique_type,
        **extra,
    }


def test_technique_with_non_numeric_speed_is_rejected() -> None:
    state = _state()

    with pytest.raises(DeltaValidationError):
        add_technique(state, _technique("odd_art", cultivation_speed_bonus="fast"))

    assert state["techniques"] == []


def test_bad_technique_does_not_block_later_cultivation() -> None:
    state = _state()
    events: list[dict] = []
    deltas = [
        {"field": "techniques.add", "operation": "add", "value": _technique("odd_art", cultivation_speed_bonus="fast")},
        {"field": "progress.cultivation_exp", "operation": "add", "value": 50},
        {"field": "progress.cultivation_exp", "operation": "add", "value": 50},
    ]

    applied = apply_validated_deltas(state, deltas, DeterministicRng("skills-test"), events)

    assert applied == 2
    assert state["progress"]["cultivation_exp"] == 100


def test_technique_elements_keep_only_names() -> None:
    state = _state()

    add_technique(state, _technique("flame_art", elements=["Hỏa", {"bad": True}, 3]))

    assert state["techniques"][0]["elements"] == ["Hỏa"]
    assert calculate_cultivation_exp_gain(state, 100) > 100


def test_technique_type_is_normalized() -> None:
    state = _state()

    for index in range(MAX_TECHNIQUES_PER_TYPE):
        add_technique(state, _technique(f"main_{index}", "main"))
    placement = add_technique(state, _technique("main_extra", "MAIN"))

    assert [technique["type"] for technique in state["techniques"]] == ["Main"] * MAX_TECHNIQUES_PER_TYPE
    assert placement == "queue"
    with pytest.raises(DeltaValidationError):
        add_technique(state, _technique("odd_type", "Ultimate"))


@pytest.mark.parametrize(
    "field, value",
    [
        ("level", 0),
        ("level", 2.5),
        ("level", "3"),
        ("qi_cost", "cheap"),
        ("cooldown", [1]),
        ("damage_multiplier", "huge"),
        ("damage_multiplier", -1),
    ],
)
def test_skill_rejects_bad_numeric_fields(field: str, value) -> None:
    state = _state()

    with pytest.raises(DeltaValidationError):
        add_skill(state, {**_skill("fire_palm"), field: value})

    assert state["skills"] == []


def test_skill_keeps_explicit_zero_cost() -> None:
    state = _state()

    add_skill(state, {**_skill("calm_breath", "support"), "qi_cost": 0, "cooldown": 0, "level": 3})

    skill = find_skill(state, "calm_breath")
    assert skill["qi_cost"] == 0
    assert skill["cooldown"] == 0
    assert skill["level"] == 3
    assert skill["max_exp"] == 300


def test_learn_moves_queued_skill_into_free_slot() -> None:
    state = _state()
    for index in range(MAX_SKILLS_PER_TYPE + 1):
        add_skill(state, _skill(f"strike_{index}"))
    queued = state["skill_queue"][0]["id"]

    with pytest.raises(AbilityError):
        manage_ability(state, "skill", "learn", queue_id=queued)

    manage_ability(state, "skill", "forget", active_id="strike_0")
    manage_ability(state, "skill", "learn", queue_id=queued)

    assert [skill["id"] for skill in state["skills"]] == ["strike_1", queued]
    assert state["skill_queue"] == []


def test_swap_exchanges_active_and_queued_technique() -> None:
    state = _state()
    for index in range(MAX_TECHNIQUES_PER_TYPE + 1):
        add_technique(state, _technique(f"main_{index}"))

    manage_ability(state, "technique", "swap", active_id="main_0", queue_id="main_2")

    assert [technique["id"] for technique in state["techniques"]] == ["main_2", "main_1"]
    assert [technique["id"] for technique in state["technique_queue"]] == ["main_0"]


def test_swap_respects_per_type_cap() -> None:
    state = _state()
    add_technique(state, _technique("main_0"))
    add_technique(state, _technique("support_0", "Support"))
    add_technique(state, _technique("support_1", "Support"))
    state["technique_queue"].append(_technique("support_2", "Support"))

    with pytest.raises(AbilityError):
        manage_ability(state, "technique", "swap", active_id="main_0", queue_id="support_2")

    assert state["techniques"][0]["id"] == "main_0"


def test_discard_and_unknown_actions() -> None:
    state = _state()
    for index in range(MAX_SKILLS_PER_TYPE + 1):
        add_skill(state, _skill(f"strike_{index}"))

    manage_ability(state, "skill", "discard", queue_id=f"strike_{MAX_SKILLS_PER_TYPE}")

    assert state["skill_queue"] == []
    with pytest.raises(AbilityError):
        manage_ability(state, "skill", "discard", queue_id="missing")
    with pytest.raises(AbilityError):
        manage_ability(state, "weapon", "learn", queue_id="x")
    with pytest.raises(AbilityError):
        manage_ability(state, "skill", "teleport")
