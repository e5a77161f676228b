from __future__ import annotations

import logging

from rules.cultivation import TECHNIQUE_GRADE_SPEED_BONUS
from rules.validation import (
    DeltaValidationError,
    as_level,
    as_mapping,
    as_number,
    as_text,
    clamp,
    optional_number,
    require_fields,
)

logger = logging.getLogger(__name__)

MAX_TECHNIQUES = 5
MAX_TECHNIQUES_PER_TYPE = 2
MAX_SKILLS = 6
MAX_SKILLS_PER_TYPE = 2
MAX_SKILL_EXP_PER_ACTION = 50
MAX_TECHNIQUE_SPEED_BONUS = 100
SKILL_LEVEL_MULTIPLIER = 1.05
SKILL_TYPES = ("attack", "defense", "support")
TECHNIQUE_KINDS = ("Main", "Support")
ABILITY_ACTIONS = ("learn", "forget", "swap", "discard")

SKILL_DEFAULTS = {
    "level": 1,
    "max_level": 10,
    "damage_multiplier": 1.5,
    "qi_cost": 10,
    "cooldown": 1,
}


class AbilityError(ValueError):
    pass


def _known_ids(*collections: list[dict]) -> set[str]:
    return {entry.get("id") for collection in collections for entry in collection}


def _place(active: list[dict], queue: list[dict], entry: dict, *, cap: int, per_type: int, type_key) -> str:
    same_type = sum(1 for existing in active if type_key(existing) == type_key(entry))
    if len(active) < cap and same_type < per_type:
        active.append(entry)
        return "active"
    queue.append(entry)
    return "queue"


def normalize_technique_type(value) -> str:
    cleaned = str(value or "").strip().lower()
    for kind in TECHNIQUE_KINDS:
        if cleaned == kind.lower():
            return kind
    raise DeltaValidationError(f"Unknown technique type: {value!r}")


def _technique_kind(entry: dict) -> str:
    try:
        return normalize_technique_type(entry.get("type"))
    except DeltaValidationError:
        return "Support"


def add_technique(state: dict, payload) -> str | None:
    """Adds a cultivation technique; overflow beyond the caps goes to the queue.

    Returns "active", "queue", or None when the technique is already known.
    """
    technique = dict(as_mapping(payload, field="techniques.add"))
    require_fields(technique, ("id", "name", "name_en", "grade", "type"), field="techniques.add")
    technique["id"] = as_text(technique["id"], field="techniques.add.id")

    active = state.setdefault("techniques", [])
    queue = state.setdefault("technique_queue", [])
    if technique["id"] in _known_ids(active, queue):
        return None

    technique["grade"] = as_text(technique["grade"], field="techniques.add.grade")
    technique["type"] = normalize_technique_type(technique["type"])
    elements = technique.get("elements")
    technique["elements"] = [element for element in elements if isinstance(element, str)] if isinstance(elements, list) else []
    speed = optional_number(
        technique.get("cultivation_speed_bonus"),
        TECHNIQUE_GRADE_SPEED_BONUS.get(technique["grade"], 10),
        field="techniques.add.cultivation_speed_bonus",
    )
    technique["cultivation_speed_bonus"] = clamp(speed, 0, MAX_TECHNIQUE_SPEED_BONUS)

    placement = _place(
        active,
        queue,
        technique,
        cap=MAX_TECHNIQUES,
        per_type=MAX_TECHNIQUES_PER_TYPE,
        type_key=_technique_kind,
    )
    logger.info("Technique %s added to %s", technique["id"], placement)
    return placement


def normalize_skill_type(value) -> str:
    normalized = str(value or "attack").strip().lower()
    return normalized if normalized in SKILL_TYPES else "attack"


def _skill_kind(entry: dict) -> str:
    return normalize_skill_type(entry.get("type"))


def skill_damage_multiplier(skill: dict) -> float:
    base = skill.get("base_damage_multiplier") or SKILL_DEFAULTS["damage_multiplier"]
    return round(base * SKILL_LEVEL_MULTIPLIER ** (skill.get("level", 1) - 1), 4)


def build_skill(payload: dict) -> dict:
    max_level = as_level(payload.get("max_level"), field="skills.add.max_level", default=SKILL_DEFAULTS["max_level"])
    level = as_level(payload.get("level"), field="skills.add.level", default=SKILL_DEFAULTS["level"])
    damage = optional_number(
        payload.get("damage_multiplier"), SKILL_DEFAULTS["damage_multiplier"], field="skills.add.damage_multiplier"
    )
    if damage <= 0:
        raise DeltaValidationError("skills.add.damage_multiplier must be positive")
    qi_cost = optional_number(payload.get("qi_cost"), SKILL_DEFAULTS["qi_cost"], field="skills.add.qi_cost")
    cooldown = optional_number(payload.get("cooldown"), SKILL_DEFAULTS["cooldown"], field="skills.add.cooldown")

    skill = {
        "id": payload["id"],
        "name": payload["name"],
        "name_en": payload["name_en"],
        "description": payload.get("description") or "",
        "description_en": payload.get("description_en") or "",
        "type": normalize_skill_type(payload.get("type")),
        "element": payload.get("element"),
        "level": min(level, max_level),
        "max_level": max_level,
        "base_damage_multiplier": damage,
        "qi_cost": int(max(0, qi_cost)),
        "cooldown": int(max(0, cooldown)),
        "current_cooldown": 0,
        "exp": 0,
        "effects": payload.get("effects"),
    }
    skill["max_exp"] = skill["level"] * 100
    skill["damage_multiplier"] = skill_damage_multiplier(skill)
    return skill


def add_skill(state: dict, payload) -> str | None:
    data = as_mapping(payload, field="skills.add")
    require_fields(data, ("id", "name", "name_en", "type"), field="skills.add")
    skill_id = as_text(data["id"], field="skills.add.id")

    active = state.setdefault("skills", [])
    queue = state.setdefault("skill_queue", [])
    if skill_id in _known_ids(active, queue):
        return None

    skill = build_skill({**data, "id": skill_id})
    placement = _place(
        active,
        queue,
        skill,
        cap=MAX_SKILLS,
        per_type=MAX_SKILLS_PER_TYPE,
        type_key=_skill_kind,
    )
    logger.info("Skill %s added to %s", skill["id"], placement)
    return placement


def find_skill(state: dict, skill_id: str) -> dict | None:
    for skill in state.get("skills") or []:
        if skill.get("id") == skill_id:
            return skill
    return None


def grant_skill_exp(skill: dict, amount: float) -> int:
    """Adds exp and applies as many level-ups as it pays for. Returns levels gained."""
    skill["exp"] = (skill.get("exp") or 0) + amount
    if not skill.get("max_exp"):
        skill["max_exp"] = skill.get("level", 1) * 100
    if not skill.get("base_damage_multiplier"):
        skill["base_damage_multiplier"] = skill.get("damage_multiplier") or SKILL_DEFAULTS["damage_multiplier"]
    max_level = skill.get("max_level") or SKILL_DEFAULTS["max_level"]
    gained = 0
    while skill["exp"] >= skill["max_exp"] and skill.get("level", 1) < max_level:
        skill["exp"] -= skill["max_exp"]
        skill["level"] = skill.get("level", 1) + 1
        skill["max_exp"] = skill["level"] * 100
        gained += 1
    skill["damage_multiplier"] = skill_damage_multiplier(skill)
    return gained


def gain_skill_exp(state: dict, payload) -> int:
    data = as_mapping(payload, field="skills.gain_exp")
    skill_id = as_text(data.get("skill_id"), field="skills.gain_exp.skill_id")
    amount = as_number(data.get("exp"), field="skills.gain_exp.exp")
    skill = find_skill(state, skill_id)
    if skill is None:
        raise DeltaValidationError(f"Skill not found: {skill_id}")
    return grant_skill_exp(skill, max(0, min(amount, MAX_SKILL_EXP_PER_ACTION)))


def tick_cooldowns(state: dict) -> None:
    for skill in state.get("skills") or []:
        if skill.get("current_cooldown"):
            skill["current_cooldown"] = max(0, skill["current_cooldown"] - 1)


def _index(entries: list[dict], entry_id: str | None) -> int | None:
    for index, entry in enumerate(entries):
        if entry.get("id") == entry_id:
            return index
    return None


def manage_ability(
    state: dict,
    ability_type: str,
    action: str,
    *,
    active_id: str | None = None,
    queue_id: str | None = None,
) -> None:
    """Moves techniques or skills between the active list and the queue.

    ``learn`` activates a queued entry within the caps, ``forget`` drops an active
    one, ``swap`` exchanges an active entry with a queued one and ``discard``
    drops a queued one.
    """
    if ability_type == "technique":
        active = state.setdefault("techniques", [])
        queue = state.setdefault("technique_queue", [])
        cap, per_type, kind = MAX_TECHNIQUES, MAX_TECHNIQUES_PER_TYPE, _technique_kind
    elif ability_type == "skill":
        active = state.setdefault("skills", [])
        queue = state.setdefault("skill_queue", [])
        cap, per_type, kind = MAX_SKILLS, MAX_SKILLS_PER_TYPE, _skill_kind
    else:
        raise AbilityError(f"Unknown ability type: {ability_type}")
    if action not in ABILITY_ACTIONS:
        raise AbilityError(f"Unknown action: {action}")

    active_index = _index(active, active_id)
    queue_index = _index(queue, queue_id)

    if action == "forget":
        if active_index is None:
            raise AbilityError(f"No active {ability_type} {active_id}")
        active.pop(active_index)
    elif action == "discard":
        if queue_index is None:
            raise AbilityError(f"No queued {ability_type} {queue_id}")
        queue.pop(queue_index)
    elif action == "learn":
        if queue_index is None:
            raise AbilityError(f"No queued {ability_type} {queue_id}")
        entry = queue[queue_index]
        if len(active) >= cap:
            raise AbilityError(f"Active {ability_type} slots are full. Forget one first.")
        if sum(1 for existing in active if kind(existing) == kind(entry)) >= per_type:
            raise AbilityError(f"Already have {per_type} {kind(entry)} {ability_type}s. Forget one first.")
        active.append(queue.pop(queue_index))
    else:
        if active_index is None or queue_index is None:
            raise AbilityError(f"{ability_type.capitalize()} not found")
        outgoing, incoming = active[active_index], queue[queue_index]
        if kind(outgoing) != kind(incoming):
            same_type = sum(
                1 for existing in active if kind(existing) == kind(incoming) and existing is not outgoing
            )
            if same_type >= per_type:
                raise AbilityError(f"Already have {per_type} {kind(incoming)} {ability_type}s.")
        active[active_index], queue[queue_index] = incoming, outgoing
    logger.info("Ability %s %s (active=%s queue=%s)", ability_type, action, active_id, queue_id)
