from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from rules.dungeons import init_dungeon_state
from rules.skills import add_skill, add_technique

logger = logging.getLogger(__name__)

CURRENT_STATE_VERSION = 6

TECHNIQUE_ITEM_TYPES = {"Main", "Support"}
SKILL_ITEM_TYPES = {"Attack", "Defense", "Movement"}

RARITY_TECHNIQUE_GRADES = {"Rare": "Earth", "Epic": "Earth", "Legendary": "Heaven"}
RARITY_SPEED_BONUS = {"Rare": 15, "Epic": 25, "Legendary": 40}

DEFENSE_KEYWORDS = ("defend", "shield", "block", "protect")
SUPPORT_KEYWORDS = ("heal", "buff", "support")


def _first_root_element(state: dict) -> str | None:
    elements = (state.get("spirit_root") or {}).get("elements") or []
    return elements[0] if elements else None


def _add_missing_fields(state: dict) -> None:
    progress = state.setdefault("progress", {})
    progress.setdefault("cultivation_path", "qi")
    progress.setdefault("exp_split", 50)
    inventory = state.setdefault("inventory", {})
    inventory.setdefault("silver", 0)
    inventory.setdefault("spirit_stones", 0)
    inventory.setdefault("items", [])
    for key in ("skills", "techniques", "skill_queue", "technique_queue"):
        if not isinstance(state.get(key), list):
            state[key] = []
    state.setdefault("equipped_items", {})
    state.setdefault("flags", {})
    state.setdefault("karma", 0)
    state.setdefault("reputation", 0)
    state.setdefault("turn_count", 0)
    state.setdefault("story_summary", "")
    state.setdefault("sect_membership", None)
    state.setdefault("last_stamina_regen", datetime.now(timezone.utc).isoformat())
    state.setdefault("lifespan_urgency", "safe")


def _default_technique_elements(state: dict) -> None:
    element = _first_root_element(state)
    for technique in state["techniques"] + state["technique_queue"]:
        if technique.get("elements") is None:
            technique["elements"] = [element] if element else []


def _accessory_slots(state: dict) -> None:
    for item in state["inventory"]["items"]:
        if item.get("type") == "Accessory" and not item.get("equipment_slot"):
            item["equipment_slot"] = "Accessory"


def _infer_skill_type(item: dict) -> str:
    name = (item.get("name") or item.get("name_en") or "").lower()
    description = (item.get("description") or item.get("description_en") or "").lower()
    if any(word in name or word in description for word in DEFENSE_KEYWORDS):
        return "defense"
    if any(word in name or word in description for word in SUPPORT_KEYWORDS):
        return "support"
    return "attack"


def _known(collection: list[dict], item: dict) -> bool:
    return any(entry.get("id") == item.get("id") or entry.get("name") == item.get("name") for entry in collection)


def _relocate_misplaced_items(state: dict) -> None:
    items = state["inventory"]["items"]
    misplaced = [item for item in items if item.get("type") in TECHNIQUE_ITEM_TYPES | SKILL_ITEM_TYPES]
    if not misplaced:
        return

    element = _first_root_element(state)
    for item in misplaced:
        name = item.get("name") or item.get("id")
        if item["type"] in TECHNIQUE_ITEM_TYPES:
            if _known(state["techniques"] + state["technique_queue"], item):
                continue
            rarity = item.get("rarity")
            add_technique(
                state,
                {
                    "id": item["id"],
                    "name": name,
                    "name_en": item.get("name_en") or name,
                    "description": item.get("description"),
                    "description_en": item.get("description_en") or item.get("description"),
                    "grade": RARITY_TECHNIQUE_GRADES.get(rarity, "Mortal"),
                    "type": item["type"],
                    "elements": [element] if element else [],
                    "cultivation_speed_bonus": RARITY_SPEED_BONUS.get(rarity, 10),
                },
            )
        else:
            if _known(state["skills"] + state["skill_queue"], item):
                continue
            skill_type = _infer_skill_type(item)
            add_skill(
                state,
                {
                    "id": item["id"],
                    "name": name,
                    "name_en": item.get("name_en") or name,
                    "description": item.get("description"),
                    "description_en": item.get("description_en") or item.get("description"),
                    "type": skill_type,
                    "damage_multiplier": 1.5 if skill_type == "attack" else 1.0,
                    "qi_cost": 10,
                    "cooldown": 2,
                },
            )

    state["inventory"]["items"] = [item for item in items if item not in misplaced]
    logger.info("Moved %d misplaced technique/skill items out of inventory", len(misplaced))


def _equipped_references(state: dict) -> None:
    items = state["inventory"]["items"]
    equipped = state.get("equipped_items") or {}
    references: dict[str, str] = {}
    for slot, value in equipped.items():
        if isinstance(value, str):
            references[slot] = value
            continue
        if not isinstance(value, dict) or not value.get("id"):
            continue
        # The inventory copy is canonical; adopt the slot copy only when the item is missing.
        if not any(item.get("id") == value["id"] for item in items):
            items.append({**value, "quantity": value.get("quantity") or 1})
        references[slot] = value["id"]
    state["equipped_items"] = references


def _dungeon_progress(state: dict) -> None:
    dungeon = state.get("dungeon")
    if not isinstance(dungeon, dict):
        state["dungeon"] = init_dungeon_state()
        return
    for key, value in init_dungeon_state().items():
        dungeon.setdefault(key, value)


MIGRATIONS: dict[int, Callable[[dict], None]] = {
    1: _add_missing_fields,
    2: _default_technique_elements,
    3: _accessory_slots,
    4: _relocate_misplaced_items,
    5: _equipped_references,
    6: _dungeon_progress,
}


def migrate_state(state: dict) -> bool:
    """Upgrades a saved state in place to CURRENT_STATE_VERSION.

    Returns True when any step ran. Steps only add or move data.
    """
    version = state.get("state_version") or 0
    if version >= CURRENT_STATE_VERSION:
        return False
    for target in range(version + 1, CURRENT_STATE_VERSION + 1):
        MIGRATIONS[target](state)
        state["state_version"] = target
    logger.info("Migrated state from version %d to %d", version, CURRENT_STATE_VERSION)
    return True
