import math

import pytest

from rules.character import create_initial_state
from rules.cultivation import (
    apply_dual_cultivation_exp,
    add_body_experience,
    body_exp_to_next,
    calculate_cultivation_exp_gain,
    can_breakthrough,
    element_compatibility,
    init_dual_cultivation,
    perform_breakthrough,
    required_exp,
    set_exp_split,
    technique_bonus,
)


def _state(grade: str = "PhổThông", elements: list[str] | None = None) -> dict:
    return create_initial_state("Lâm", 16, {"elements": elements or ["Hỏa"], "grade": grade}, "vi")


def test_mortal_breakthrough_enters_first_stage() -> None:
    state = _state()
    state["progress"]["cultivation_exp"] = 100

    assert can_breakthrough(state)
    assert perform_breakthrough(state)

    assert state["progress"]["realm"] == "LuyệnKhí"
    assert state["progress"]["realm_stage"] == 1
    assert state["progress"]["cultivation_exp"] == 0
    assert state["stats"]["hp_max"] == 150
    assert state["stats"]["qi_max"] == 100
    assert state["stats"]["hp"] == 150
    assert state["stats"]["qi"] == 100
    assert state["stats"]["stamina_max"] == 102
    assert state["attrs"]["str"] == 5


def test_breakthrough_requires_enough_exp() -> None:
    state = _state()
    state["progress"]["cultivation_exp"] = 99

    assert not can_breakthrough(state)
    assert not perform_breakthrough(state)
    assert state["progress"]["realm"] == "PhàmNhân"


def test_stage_requirements() -> None:
    assert required_exp("PhàmNhân", 0) == 100
    assert required_exp("LuyệnKhí", 1) == 300
    assert required_exp("LuyệnKhí", 9) == 7000
    assert required_exp("NguyênAnh", 9) == math.inf


def test_final_stage_of_realm_advances_realm() -> None:
    state = _state()
    state["progress"].update(realm="LuyệnKhí", realm_stage=9, cultivation_exp=7000)

    assert perform_breakthrough(state)
    assert state["progress"]["realm"] == "TrúcCơ"
    assert state["progress"]["realm_stage"] == 1


def test_spirit_root_and_technique_scale_exp() -> None:
    plain = _state()
    rare = _state(grade="Hiếm")

    assert calculate_cultivation_exp_gain(plain, 10) == 10
    assert calculate_cultivation_exp_gain(rare, 10) == 15

    plain["techniques"] = [{"id": "t", "type": "Main", "elements": ["Hỏa"], "cultivation_speed_bonus": 10}]
    assert technique_bonus(plain) == pytest.approx(1.4)


def test_element_compatibility() -> None:
    assert element_compatibility(["Hỏa"], ["Hỏa"]) == 0.3
    assert element_compatibility(["Mộc"], ["Hỏa"]) == 0.15
    assert element_compatibility(["Kim"], ["Hỏa"]) == -0.2
    assert element_compatibility(["Hỏa"], []) == 0.0


def test_universal_technique_bonus() -> None:
    state = _state()
    state["techniques"] = [{"id": "t", "type": "Main", "elements": []}]

    assert technique_bonus(state) == pytest.approx(1.2)


def test_body_experience_advances_stages_and_resets() -> None:
    state = _state()
    init_dual_cultivation(state["progress"])

    result = add_body_experience(state, 60)

    assert result == {"stage_ups": 1, "realm_ups": 0}
    assert state["progress"]["body_stage"] == 1
    assert state["progress"]["body_exp"] == 0
    assert state["stats"]["hp_max"] == 105
    assert state["stats"]["stamina_max"] == 102
    assert state["attrs"]["str"] == 3
    assert state["progress"]["body_str_carry"] == 0.5

    add_body_experience(state, 100)
    assert state["attrs"]["str"] == 4


def test_body_stage_five_needs_next_realm_threshold() -> None:
    state = _state()
    init_dual_cultivation(state["progress"])
    state["progress"]["body_stage"] = 5

    assert body_exp_to_next(state["progress"]) == 200
    add_body_experience(state, 200)
    assert state["progress"]["body_realm"] == "LuyệnCốt"
    assert state["progress"]["body_stage"] == 0


def test_dual_cultivation_split() -> None:
    state = _state()
    init_dual_cultivation(state["progress"])
    set_exp_split(state["progress"], 130)
    assert state["progress"]["exp_split"] == 100

    set_exp_split(state["progress"], 75)
    result = apply_dual_cultivation_exp(state, 40)

    assert result["qi_exp"] == 30
    assert result["body_exp"] == 10
    assert state["progress"]["cultivation_exp"] == 30
    assert state["progress"]["body_exp"] == 10


def test_qi_path_sends_all_exp_to_qi() -> None:
    state = _state()

    result = apply_dual_cultivation_exp(state, 40)

    assert result["qi_exp"] == 40
    assert result["body_exp"] == 0
    assert "body_realm" not in state["progress"]
