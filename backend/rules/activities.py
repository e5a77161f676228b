from __future__ import annotations

import math
from dataclasses import dataclass, field

from rules.core import DeterministicRng
from rules.cultivation import (
    REALMS,
    add_body_experience,
    apply_dual_cultivation_exp,
    calculate_cultivation_exp_gain,
)
from rules.inventory import equipped_items, find_item
from rules.skills import find_skill, grant_skill_exp
from rules.stats import advance_time, update_hp, update_qi, update_stamina

MIN_BONUS_PERCENT = -50
INJURY_PENALTY = 10

DURATION_SEGMENTS = {
    "1_segment": 1,
    "half_day": 2,
    "full_day": 4,
    "3_days": 12,
    "week": 28,
    "month": 120,
}


class ActivityError(ValueError):
    pass


@dataclass(frozen=True)
class Activity:
    id: str
    name: str
    name_en: str
    category: str
    stamina_cost: int
    qi_cost: int
    durations: tuple[str, ...]
    rewards: dict
    affected_by: tuple[str, ...] = ()
    min_stamina: int = 0
    min_qi: int = 0
    min_realm: str | None = None
    in_sect: bool = False
    not_injured: bool = False
    required_items: tuple[str, ...] = ()


ACTIVITIES: dict[str, Activity] = {
    activity.id: activity
    for activity in (
        Activity(
            id="cultivate_qi",
            name="Tu luyện Khí",
            name_en="Qi Cultivation",
            category="cultivation",
            stamina_cost=2,
            qi_cost=0,
            durations=("1_segment", "half_day", "full_day", "3_days", "week", "month"),
            rewards={"qi_exp": 15, "insight_chance": 0.05},
            affected_by=("technique", "equipment", "condition"),
            min_stamina=10,
        ),
        Activity(
            id="cultivate_body",
            name="Luyện Thể",
            name_en="Body Cultivation",
            category="cultivation",
            stamina_cost=4,
            qi_cost=0,
            durations=("1_segment", "half_day", "full_day", "3_days", "week"),
            rewards={"body_exp": 12, "insight_chance": 0.03},
            affected_by=("technique", "equipment", "condition"),
            min_stamina=20,
            not_injured=True,
        ),
        Activity(
            id="meditate",
            name="Thiền định",
            name_en="Meditation",
            category="cultivation",
            stamina_cost=1,
            qi_cost=0,
            durations=("1_segment", "half_day", "full_day"),
            rewards={"qi_exp": 5, "insight_chance": 0.15, "stamina_recovery": 2},
            affected_by=("condition",),
            min_stamina=5,
        ),
        Activity(
            id="practice_skill",
            name="Luyện Kỹ năng",
            name_en="Skill Practice",
            category="combat",
            stamina_cost=3,
            qi_cost=5,
            durations=("1_segment", "half_day", "full_day", "3_days"),
            rewards={"skill_exp": 20},
            affected_by=("equipment", "condition"),
            min_stamina=15,
            min_qi=10,
        ),
        Activity(
            id="explore",
            name="Khám phá",
            name_en="Explore",
            category="gathering",
            stamina_cost=3,
            qi_cost=0,
            durations=("1_segment", "half_day", "full_day"),
            rewards={"qi_exp": 5, "insight_chance": 0.1},
            affected_by=("equipment",),
            min_stamina=20,
        ),
        Activity(
            id="rest",
            name="Nghỉ ngơi",
            name_en="Rest",
            category="recovery",
            stamina_cost=0,
            qi_cost=0,
            durations=("1_segment", "half_day", "full_day", "3_days", "week"),
            rewards={"stamina_recovery": 15, "hp_recovery": 10},
            affected_by=("condition",),
        ),
        Activity(
            id="sect_duty",
            name="Nhiệm vụ môn phái",
            name_en="Sect Duty",
            category="social",
            stamina_cost=3,
            qi_cost=5,
            durations=("half_day", "full_day", "3_days"),
            rewards={"qi_exp": 10, "skill_exp": 10},
            affected_by=("condition",),
            min_stamina=15,
            in_sect=True,
        ),
        Activity(
            id="breakthrough_prep",
            name="Chuẩn bị đột phá",
            name_en="Breakthrough Preparation",
            category="special",
            stamina_cost=1,
            qi_cost=0,
            durations=("1_segment", "half_day"),
            rewards={"insight_chance": 0.1},
            affected_by=("condition",),
            min_stamina=20,
        ),
    )
}

INSIGHTS = {
    "cultivate_qi": (
        ("Cảm nhận được dòng chảy của linh khí trong kinh mạch", "You feel spiritual energy flowing through your meridians"),
        ("Hiểu thêm về bản chất của khí nguyên", "You grasp more of the nature of primordial qi"),
    ),
    "cultivate_body": (
        ("Cơ thể trở nên nhẹ nhàng hơn", "Your body feels lighter"),
        ("Cảm nhận sức mạnh tiềm ẩn trong cơ bắp", "You sense hidden strength in your muscles"),
    ),
    "meditate": (
        ("Tâm trí trở nên thanh tịnh", "Your mind becomes clear"),
        ("Cảm nhận sự hài hòa của thiên địa", "You sense the harmony of heaven and earth"),
    ),
    "explore": (
        ("Phát hiện một con đường mòn ẩn giấu", "You discover a hidden trail"),
        ("Nghe được tin đồn thú vị", "You overhear an interesting rumor"),
    ),
    "sect_duty": (("Được sư huynh chỉ điểm", "A senior disciple offers guidance"),),
    "breakthrough_prep": (("Cảm nhận được cơ duyên đang đến gần", "You sense an opportunity drawing near"),),
}


@dataclass
class ActivityResult:
    activity: str
    segments: int
    qi_exp: int = 0
    body_exp: int = 0
    skill_exp: int = 0
    stamina_recovered: int = 0
    hp_recovered: int = 0
    insights: list[str] = field(default_factory=list)
    events: list[dict] = field(default_factory=list)


def get_activity(activity_id: str) -> Activity:
    activity = ACTIVITIES.get(activity_id)
    if activity is None:
        raise ActivityError(f"Unknown activity: {activity_id}")
    return activity


def duration_segments(activity: Activity, duration: str) -> int:
    if duration not in activity.durations:
        raise ActivityError(f"{activity.id} does not allow duration {duration}")
    return DURATION_SEGMENTS[duration]


def activity_cost(activity_id: str, segments: int) -> dict:
    activity = get_activity(activity_id)
    return {
        "stamina": activity.stamina_cost * segments,
        "qi": activity.qi_cost * segments,
        "time_segments": segments,
    }


def _is_injured(state: dict) -> bool:
    return bool((state.get("condition") or {}).get("injuries"))


def can_perform_activity(activity_id: str, state: dict, locale: str = "vi") -> tuple[bool, list[str]]:
    activity = get_activity(activity_id)
    stats = state["stats"]
    en = locale == "en"
    reasons: list[str] = []
    if activity.min_stamina and stats["stamina"] < activity.min_stamina:
        reasons.append(
            f"Need at least {activity.min_stamina} stamina" if en else f"Cần ít nhất {activity.min_stamina} thể lực"
        )
    if activity.min_qi and stats["qi"] < activity.min_qi:
        reasons.append(f"Need at least {activity.min_qi} qi" if en else f"Cần ít nhất {activity.min_qi} khí")
    if activity.min_realm and REALMS.index(state["progress"]["realm"]) < REALMS.index(activity.min_realm):
        reasons.append(f"Need to reach {activity.min_realm} realm" if en else f"Cần đạt cảnh giới {activity.min_realm}")
    if activity.in_sect and not state.get("sect_membership"):
        reasons.append("Need to join a sect" if en else "Cần gia nhập môn phái")
    if activity.not_injured and _is_injured(state):
        reasons.append("Cannot perform while injured" if en else "Không thể thực hiện khi bị thương")
    if activity.required_items and not all(find_item(state, item_id) for item_id in activity.required_items):
        reasons.append("Missing required items" if en else "Thiếu vật phẩm cần thiết")
    return not reasons, reasons


def available_activities(state: dict, locale: str = "vi") -> list[dict]:
    listing = []
    for activity in ACTIVITIES.values():
        allowed, reasons = can_perform_activity(activity.id, state, locale)
        listing.append(
            {
                "id": activity.id,
                "name": activity.name_en if locale == "en" else activity.name,
                "category": activity.category,
                "durations": list(activity.durations),
                "can_perform": allowed,
                "reasons": reasons,
            }
        )
    return listing


def activity_bonus_percent(activity: Activity, state: dict) -> int:
    total = 0
    if "technique" in activity.affected_by:
        main = next((t for t in state.get("techniques") or [] if t.get("type") == "Main"), None)
        if main is not None:
            total += main.get("cultivation_speed_bonus") or 0
    if "equipment" in activity.affected_by:
        for item in equipped_items(state).values():
            total += (item.get("bonus_stats") or {}).get("cultivation_speed", 0)
    if "condition" in activity.affected_by:
        total -= len((state.get("condition") or {}).get("injuries") or []) * INJURY_PENALTY
    return max(MIN_BONUS_PERCENT, total)


def expected_rewards(activity_id: str, segments: int, state: dict) -> dict:
    activity = get_activity(activity_id)
    bonus = activity_bonus_percent(activity, state)
    multiplier = 1 + bonus / 100
    rewards = activity.rewards
    return {
        "qi_exp": math.floor(rewards.get("qi_exp", 0) * segments * multiplier),
        "body_exp": math.floor(rewards.get("body_exp", 0) * segments * multiplier),
        "skill_exp": math.floor(rewards.get("skill_exp", 0) * segments * multiplier),
        "insight_chance": min(1.0, rewards.get("insight_chance", 0) * segments),
        "stamina_recovery": math.floor(rewards.get("stamina_recovery", 0) * segments),
        "hp_recovery": math.floor(rewards.get("hp_recovery", 0) * segments),
        "bonus_percent": bonus,
    }


def perform_activity(
    state: dict,
    activity_id: str,
    duration: str,
    rng: DeterministicRng,
    *,
    locale: str = "vi",
    skill_id: str | None = None,
) -> ActivityResult:
    """Runs an activity to completion: pays its cost, advances time, grants rewards.

    Raises ActivityError when the activity is unknown, the duration is not
    allowed, or the character cannot perform or afford it.
    """
    activity = get_activity(activity_id)
    segments = duration_segments(activity, duration)
    allowed, reasons = can_perform_activity(activity_id, state, locale)
    if not allowed:
        raise ActivityError("; ".join(reasons))

    cost = activity_cost(activity_id, segments)
    stats = state["stats"]
    if stats["stamina"] < cost["stamina"] or stats["qi"] < cost["qi"]:
        raise ActivityError(f"Cannot afford {activity_id}: needs {cost['stamina']} stamina and {cost['qi']} qi")

    rewards = expected_rewards(activity_id, segments, state)
    update_stamina(state, -cost["stamina"])
    update_qi(state, -cost["qi"])
    advance_time(state, segments)

    result = ActivityResult(activity=activity_id, segments=segments)
    progress = state["progress"]
    path = progress.get("cultivation_path", "qi")

    if rewards["qi_exp"]:
        gained = calculate_cultivation_exp_gain(state, rewards["qi_exp"])
        if path == "dual":
            split = apply_dual_cultivation_exp(state, gained)
            result.qi_exp = split["qi_exp"]
            result.body_exp += split["body_exp"]
        else:
            progress["cultivation_exp"] += gained
            result.qi_exp = gained
    if rewards["body_exp"] and path in ("body", "dual"):
        add_body_experience(state, rewards["body_exp"])
        result.body_exp += rewards["body_exp"]
    if rewards["skill_exp"]:
        skill = find_skill(state, skill_id) if skill_id else None
        if skill is None and state.get("skills"):
            skill = state["skills"][0]
        if skill is not None:
            levels = grant_skill_exp(skill, rewards["skill_exp"])
            result.skill_exp = rewards["skill_exp"]
            if levels:
                result.events.append(
                    {"type": "skill_level_up", "data": {"skill": skill["id"], "level": skill["level"]}}
                )
    if rewards["stamina_recovery"]:
        before = stats["stamina"]
        update_stamina(state, rewards["stamina_recovery"])
        result.stamina_recovered = stats["stamina"] - before
    if rewards["hp_recovery"]:
        before = stats["hp"]
        update_hp(state, rewards["hp_recovery"])
        result.hp_recovered = stats["hp"] - before

    pool = INSIGHTS.get(activity_id)
    if pool and rng.chance(rewards["insight_chance"], label="activity_insight"):
        text, text_en = rng.random_element(pool, label="activity_insight_text")
        result.insights.append(text_en if locale == "en" else text)
        result.events.append({"type": "insight", "data": {"activity": activity_id, "text": result.insights[-1]}})
    return result
