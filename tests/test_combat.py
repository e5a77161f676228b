import copy

import pytest

from rules.character import create_initial_state
from rules.combat import (
    MAX_ROUNDS,
    accuracy,
    auto_resolve_combat,
    dodge_chance,
    generate_enemy,
    resolve_round,
)
from rules.core import DeterministicRng
from rules.skills import add_skill


def _state() -> dict:
    state = create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "vi")
    state["stats"].update(qi=30, qi_max=30)
    return state


def test_enemy_scales_with_realm_and_difficulty() -> None:
    state = _state()

    easy = generate_enemy(state, "easy", DeterministicRng("enemy"))
    hard = generate_enemy(state, "hard", DeterministicRng("enemy"))

    assert easy.hp == 21
    assert hard.hp == 45
    assert hard.loot_table_id == "cave_treasure"
    assert easy.name == hard.name

    state["progress"].update(realm="LuyệnKhí", realm_stage=2)
    medium = generate_enemy(state, "medium", DeterministicRng("enemy"))
    assert medium.hp == (30 + 2 * 20) * 2
    assert medium.atk == (8 + 2 * 3) * 2


def test_unknown_difficulty_rejected() -> None:
    with pytest.raises(ValueError):
        generate_enemy(_state(), "nightmare", DeterministicRng("enemy"))


def test_accuracy_and_dodge_are_capped() -> None:
    assert accuracy({"perception": 3}) == pytest.approx(0.88)
    assert accuracy({"perception": 50}) == 0.98
    assert dodge_chance({"agi": 100, "perception": 0, "luck": 0}) == 0.40


def test_same_seed_same_fight() -> None:
    state_a = _state()
    state_b = copy.deepcopy(state_a)
    enemy_a = generate_enemy(state_a, "medium", DeterministicRng("fight"))
    enemy_b = copy.deepcopy(enemy_a)

    result_a = auto_resolve_combat(state_a, enemy_a, DeterministicRng("fight-rounds"), locale="en")
    result_b = auto_resolve_combat(state_b, enemy_b, DeterministicRng("fight-rounds"), locale="en")

    assert result_a.narrative == result_b.narrative
    assert result_a.rounds == result_b.rounds
    assert state_a == state_b
    assert 1 <= result_a.rounds <= MAX_ROUNDS
    assert all(event["type"] in ("combat", "loot") for event in result_a.events)


def test_victory_grants_loot() -> None:
    state = _state()
    enemy = generate_enemy(state, "easy", DeterministicRng("weak"))
    enemy.hp = 1
    enemy.atk = 0
    state["attrs"]["perception"] = 20

    result = auto_resolve_combat(state, enemy, DeterministicRng("loot-roll"))

    assert result.victory
    assert result.loot is not None
    assert state["inventory"]["silver"] == 100 + result.loot.silver
    assert result.events[-1]["type"] == "loot"


def test_qi_attack_without_qi_falls_back_to_attack() -> None:
    state = _state()
    state["stats"]["qi"] = 0
    enemy = generate_enemy(state, "medium", DeterministicRng("enemy"))

    result = resolve_round(state, enemy, "qi_attack", DeterministicRng("round"), locale="en")

    assert result.action == "attack"
    assert result.narrative.startswith("Not enough Qi!")


def test_skill_use_costs_qi_and_starts_cooldown() -> None:
    state = _state()
    add_skill(
        state,
        {"id": "fire_palm", "name": "Hỏa Chưởng", "name_en": "Fire Palm", "type": "attack", "qi_cost": 10, "cooldown": 2},
    )
    enemy = generate_enemy(state, "hard", DeterministicRng("enemy"))
    enemy.hp = enemy.hp_max = 10_000

    first = resolve_round(state, enemy, "skill", DeterministicRng("round-1"), "fire_palm")
    skill = state["skills"][0]

    assert first.action == "skill"
    assert state["stats"]["qi"] == 20
    assert skill["current_cooldown"] == 2
    assert 5 <= skill["exp"] <= 15

    second = resolve_round(state, enemy, "skill", DeterministicRng("round-2"), "fire_palm")
    assert second.action == "attack"
    assert skill["current_cooldown"] == 1


def test_defend_stance_deals_no_damage() -> None:
    state = _state()
    enemy = generate_enemy(state, "medium", DeterministicRng("enemy"))
    hp_before = enemy.hp

    result = resolve_round(state, enemy, "defend", DeterministicRng("round"))

    assert result.player_damage == 0
    assert enemy.hp == hp_before


def test_unknown_action_rejected() -> None:
    state = _state()
    enemy = generate_enemy(state, "medium", DeterministicRng("enemy"))

    with pytest.raises(ValueError):
        resolve_round(state, enemy, "flee", DeterministicRng("round"))
