from __future__ import annotations

import math
from datetime import datetime, timezone

TIME_SEGMENTS = ["Sáng", "Chiều", "Tối", "Đêm"]
DAYS_PER_MONTH = 30
MONTHS_PER_YEAR = 12

MAX_LIFESPAN_BY_REALM = {
    "PhàmNhân": 80,
    "LuyệnKhí": 120,
    "TrúcCơ": 200,
    "KếtĐan": 500,
    "NguyênAnh": 1000,
}
LIFESPAN_CRITICAL_YEARS = 10
LIFESPAN_WARNING_YEARS = 30


def clamp_stat(value: float, lo: float, hi: float) -> int:
    return max(lo, min(hi, math.floor(value)))


def update_hp(state: dict, delta: float) -> None:
    stats = state["stats"]
    stats["hp"] = clamp_stat(stats["hp"] + delta, 0, stats["hp_max"])


def update_qi(state: dict, delta: float) -> None:
    stats = state["stats"]
    stats["qi"] = clamp_stat(stats["qi"] + delta, 0, stats["qi_max"])


def update_stamina(state: dict, delta: float) -> None:
    stats = state["stats"]
    stats["stamina"] = clamp_stat(stats["stamina"] + delta, 0, stats["stamina_max"])


def add_silver(state: dict, amount: float) -> None:
    inventory = state["inventory"]
    inventory["silver"] = max(0, math.floor(inventory["silver"] + amount))


def subtract_silver(state: dict, amount: float) -> None:
    add_silver(state, -amount)


def add_spirit_stones(state: dict, amount: float) -> None:
    inventory = state["inventory"]
    inventory["spirit_stones"] = max(0, math.floor(inventory["spirit_stones"] + amount))


def subtract_spirit_stones(state: dict, amount: float) -> None:
    add_spirit_stones(state, -amount)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def regenerate_stamina(state: dict, now: datetime | None = None) -> int:
    """Real-time regeneration: one stamina per whole minute since the last regen.

    The stored timestamp only moves when stamina is actually granted, so calling
    this twice inside the same minute grants nothing the second time. Returns
    the amount regenerated.
    """
    now = now or datetime.now(timezone.utc)
    last_regen = _parse_timestamp(state.get("last_stamina_regen")) or now
    minutes_elapsed = math.floor((now - last_regen).total_seconds() / 60)
    stats = state["stats"]
    if minutes_elapsed <= 0 or stats["stamina"] >= stats["stamina_max"]:
        if state.get("last_stamina_regen") is None:
            state["last_stamina_regen"] = now.isoformat()
        return 0
    regenerated = min(minutes_elapsed, stats["stamina_max"] - stats["stamina"])
    stats["stamina"] += regenerated
    state["last_stamina_regen"] = now.isoformat()
    return regenerated


def max_lifespan(state: dict) -> int:
    realm = state.get("progress", {}).get("realm", "PhàmNhân")
    return MAX_LIFESPAN_BY_REALM.get(realm, MAX_LIFESPAN_BY_REALM["PhàmNhân"])


def lifespan_urgency(state: dict) -> str:
    years_remaining = max_lifespan(state) - state.get("age", 0)
    if years_remaining < LIFESPAN_CRITICAL_YEARS:
        return "critical"
    if years_remaining < LIFESPAN_WARNING_YEARS:
        return "warning"
    return "safe"


def advance_time(state: dict, segments: int = 1) -> None:
    index = TIME_SEGMENTS.index(state.get("time_segment", TIME_SEGMENTS[0]))
    for _ in range(max(0, int(segments))):
        index += 1
        if index < len(TIME_SEGMENTS):
            continue
        index = 0
        state["time_day"] += 1
        if state["time_day"] <= DAYS_PER_MONTH:
            continue
        state["time_day"] = 1
        state["time_month"] += 1
        if state["time_month"] <= MONTHS_PER_YEAR:
            continue
        state["time_month"] = 1
        state["time_year"] += 1
        state["age"] = state.get("age", 0) + 1
    state["time_segment"] = TIME_SEGMENTS[index]
    state["lifespan_urgency"] = lifespan_urgency(state)


def can_afford_cost(state: dict, cost: dict | None) -> bool:
    if not cost:
        return True
    stats = state["stats"]
    inventory = state["inventory"]
    if cost.get("stamina") and stats["stamina"] < cost["stamina"]:
        return False
    if cost.get("qi") and stats["qi"] < cost["qi"]:
        return False
    if cost.get("silver") and inventory["silver"] < cost["silver"]:
        return False
    if cost.get("spirit_stones") and inventory["spirit_stones"] < cost["spirit_stones"]:
        return False
    return True


def apply_cost(state: dict, cost: dict | None) -> None:
    if not cost:
        return
    if cost.get("stamina"):
        update_stamina(state, -cost["stamina"])
    if cost.get("qi"):
        update_qi(state, -cost["qi"])
    if cost.get("silver"):
        subtract_silver(state, cost["silver"])
    if cost.get("spirit_stones"):
        subtract_spirit_stones(state, cost["spirit_stones"])
    if cost.get("time_segments"):
        advance_time(state, cost["time_segments"])
