from __future__ import annotations

import secrets
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from models import Run
from rules.core import DeterministicRng
from rules.dungeons import init_dungeon_state
from rules.migrations import CURRENT_STATE_VERSION
from rules.settings import normalize_locale, starting_location
from rules.stats import lifespan_urgency

ELEMENTS = ["Kim", "Mộc", "Thủy", "Hỏa", "Thổ"]
SPIRIT_ROOT_GRADES = ["PhổThông", "Khá", "Hiếm", "ThiênPhẩm"]

BASE_STATS = {
    "hp": 100,
    "hp_max": 100,
    "qi": 0,
    "qi_max": 0,
    "stamina": 100,
    "stamina_max": 100,
}
BASE_ATTRS = {"str": 3, "agi": 3, "int": 3, "perception": 3, "luck": 3}
DEFAULT_AGE = 16


def generate_spirit_root(rng: DeterministicRng) -> dict:
    grade_roll = rng.random(label="spirit_root_grade")
    if grade_roll < 0.6:
        grade = "PhổThông"
    elif grade_roll < 0.85:
        grade = "Khá"
    elif grade_roll < 0.97:
        grade = "Hiếm"
    else:
        grade = "ThiênPhẩm"

    element_count = 1 if rng.chance(0.7, label="spirit_root_elements") else 2
    elements: list[str] = []
    while len(elements) < element_count:
        element = rng.random_element(ELEMENTS)
        if element not in elements:
            elements.append(element)
    return {"elements": elements, "grade": grade}


def _story_intro(name: str, age: int, locale: str) -> str:
    if locale == "vi":
        return (
            f"{name}, một phàm nhân {age} tuổi, chưa có công pháp hay kĩ năng gì, "
            "mới bắt đầu hành trình tu tiên."
        )
    return (
        f"{name}, a {age}-year-old mortal with no cultivation techniques or skills, "
        "has just begun the journey of cultivation."
    )


def create_initial_state(
    name: str,
    age: int,
    spirit_root: dict,
    locale: str,
    *,
    now: datetime | None = None,
) -> dict:
    locale = normalize_locale(locale)
    now = now or datetime.now(timezone.utc)
    state = {
        "state_version": CURRENT_STATE_VERSION,
        "name": name,
        "stats": dict(BASE_STATS),
        "attrs": dict(BASE_ATTRS),
        "progress": {
            "realm": "PhàmNhân",
            "realm_stage": 0,
            "cultivation_exp": 0,
            "cultivation_path": "qi",
            "exp_split": 50,
        },
        "spirit_root": {
            "elements": list(spirit_root.get("elements", [])),
            "grade": spirit_root.get("grade", "PhổThông"),
        },
        "inventory": {"silver": 100, "spirit_stones": 0, "items": []},
        "equipped_items": {},
        "location": starting_location(locale),
        "time_day": 1,
        "time_month": 1,
        "time_year": 1,
        "time_segment": "Sáng",
        "karma": 0,
        "reputation": 0,
        "age": age,
        "flags": {},
        "story_summary": _story_intro(name, age, locale),
        "turn_count": 0,
        "last_stamina_regen": now.isoformat(),
        "skills": [],
        "techniques": [],
        "skill_queue": [],
        "technique_queue": [],
        "sect": None,
        "sect_en": None,
        "sect_membership": None,
        "dungeon": init_dungeon_state(),
    }
    state["lifespan_urgency"] = lifespan_urgency(state)
    return state


def create_run_record(
    db: Session,
    *,
    name: str,
    age: int | None = None,
    locale: str | None = None,
    world_seed: str | None = None,
) -> Run:
    locale = normalize_locale(locale)
    if not world_seed:
        world_seed = secrets.token_hex(8)
    rng = DeterministicRng(f"{world_seed}-character")
    spirit_root = generate_spirit_root(rng)
    state = create_initial_state(name, age or DEFAULT_AGE, spirit_root, locale)
    run = Run(
        world_seed=world_seed,
        locale=locale,
        character_name=name,
        state_json=state,
        state_version=state["state_version"],
    )
    db.add(run)
    db.flush()
    return run
