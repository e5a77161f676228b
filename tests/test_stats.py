from datetime import datetime, timedelta, timezone

from rules.character import create_initial_state
from rules.stats import (
    advance_time,
    apply_cost,
    can_afford_cost,
    clamp_stat,
    lifespan_urgency,
    regenerate_stamina,
    subtract_silver,
    update_hp,
    update_qi,
    update_stamina,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _state() -> dict:
    return create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "Khá"}, "vi", now=NOW)


def test_clamp_stat_floors_and_bounds() -> None:
    assert clamp_stat(5.9, 0, 10) == 5
    assert clamp_stat(-3, 0, 10) == 0
    assert clamp_stat(42, 0, 10) == 10


def test_hp_qi_stamina_stay_in_range() -> None:
    state = _state()
    state["stats"]["qi_max"] = 50

    update_hp(state, -150)
    update_qi(state, 80)
    update_stamina(state, 20)

    assert state["stats"]["hp"] == 0
    assert state["stats"]["qi"] == 50
    assert state["stats"]["stamina"] == 100


def test_currency_never_negative() -> None:
    state = _state()

    subtract_silver(state, 500)

    assert state["inventory"]["silver"] == 0


def test_stamina_regenerates_once_per_minute() -> None:
    state = _state()
    state["stats"]["stamina"] = 50

    gained = regenerate_stamina(state, NOW + timedelta(minutes=3, seconds=30))
    again = regenerate_stamina(state, NOW + timedelta(minutes=3, seconds=50))

    assert gained == 3
    assert again == 0
    assert state["stats"]["stamina"] == 53


def test_stamina_regen_caps_at_max() -> None:
    state = _state()
    state["stats"]["stamina"] = 98

    regenerate_stamina(state, NOW + timedelta(hours=1))

    assert state["stats"]["stamina"] == 100


def test_advance_time_rolls_over_year_and_ages() -> None:
    state = _state()
    state.update(time_day=30, time_month=12, time_year=1, time_segment="Đêm")

    advance_time(state, 1)

    assert (state["time_day"], state["time_month"], state["time_year"]) == (1, 1, 2)
    assert state["time_segment"] == "Sáng"
    assert state["age"] == 17


def test_lifespan_urgency_thresholds() -> None:
    state = _state()

    state["age"] = 40
    assert lifespan_urgency(state) == "safe"
    state["age"] = 55
    assert lifespan_urgency(state) == "warning"
    state["age"] = 75
    assert lifespan_urgency(state) == "critical"
    state["progress"]["realm"] = "LuyệnKhí"
    assert lifespan_urgency(state) == "safe"


def test_apply_cost_deducts_and_advances_time() -> None:
    state = _state()
    cost = {"stamina": 10, "silver": 30, "time_segments": 2}

    assert can_afford_cost(state, cost)
    apply_cost(state, cost)

    assert state["stats"]["stamina"] == 90
    assert state["inventory"]["silver"] == 70
    assert state["time_segment"] == "Tối"
    assert not can_afford_cost(state, {"spirit_stones": 1})
