from __future__ import annotations

import copy

from rules.stats import clamp_stat

EQUIPMENT_SLOTS = ["Weapon", "Head", "Chest", "Legs", "Feet", "Hands", "Accessory", "Artifact"]
EQUIPPABLE_TYPES = {"Equipment", "Accessory"}
TECHNIQUE_TYPES = {"Main", "Support"}
SKILL_TYPES = {"Attack", "Defense", "Movement"}
ATTRIBUTE_KEYS = ("str", "agi", "int", "perception", "luck")


def _items(state: dict) -> list[dict]:
    return state["inventory"].setdefault("items", [])


def find_item(state: dict, item_id: str, item_type: str | None = None) -> dict | None:
    for item in _items(state):
        if item.get("id") != item_id:
            continue
        if item_type is None or item.get("type") == item_type:
            return item
    return None


def _instance_id(state: dict, base_id: str) -> str:
    taken = {entry.get("id") for entry in _items(state)}
    if base_id not in taken:
        return base_id
    suffix = 2
    while f"{base_id}_{suffix}" in taken:
        suffix += 1
    return f"{base_id}_{suffix}"


def _add_equipment(state: dict, item: dict, quantity: int) -> dict:
    entry = None
    for _ in range(quantity):
        entry = copy.deepcopy(item)
        entry["quantity"] = 1
        entry["base_id"] = item.get("base_id") or item["id"]
        entry["id"] = _instance_id(state, item["id"])
        _items(state).append(entry)
    return entry


def add_item(state: dict, item: dict) -> dict:
    """Stack onto an existing (id, type) entry or append a copy of the item.

    Equipment never stacks: every unit is its own entry so enhancement and
    equipped references stay per instance.
    """
    quantity = item.get("quantity") or 1
    if item.get("type") in EQUIPPABLE_TYPES:
        return _add_equipment(state, item, quantity)
    existing = find_item(state, item["id"], item.get("type"))
    if existing is not None:
        existing["quantity"] = existing.get("quantity", 1) + quantity
        return existing
    entry = copy.deepcopy(item)
    entry["quantity"] = quantity
    _items(state).append(entry)
    return entry


def merge_items(state: dict, items: list[dict]) -> None:
    for item in items:
        add_item(state, item)


def remove_item(state: dict, item_id: str, quantity: int = 1, item_type: str | None = None) -> bool:
    item = find_item(state, item_id, item_type)
    if item is None:
        return False
    item["quantity"] = item.get("quantity", 1) - quantity
    if item["quantity"] <= 0:
        _items(state).remove(item)
        _clear_slots_for(state, item_id)
    return True


def item_count(state: dict, item_id: str) -> int:
    return sum(item.get("quantity", 0) for item in _items(state) if item.get("id") == item_id)


def _clear_slots_for(state: dict, item_id: str) -> None:
    equipped = state.setdefault("equipped_items", {})
    for slot in [slot for slot, ref in equipped.items() if ref == item_id]:
        del equipped[slot]


def is_equippable(item: dict | None) -> bool:
    return bool(item) and item.get("type") in EQUIPPABLE_TYPES and bool(item.get("equipment_slot"))


def find_equippable(state: dict, item_id: str) -> dict | None:
    for item in _items(state):
        if item.get("id") == item_id and item.get("type") in EQUIPPABLE_TYPES:
            return item
    return None


def equip_item(state: dict, item_id: str) -> str | None:
    item = find_equippable(state, item_id)
    if not is_equippable(item):
        return None
    slot = item["equipment_slot"]
    if slot not in EQUIPMENT_SLOTS:
        return None
    state.setdefault("equipped_items", {})[slot] = item_id
    return slot


def unequip_item(state: dict, slot: str) -> str | None:
    return state.setdefault("equipped_items", {}).pop(slot, None)


def equipped_items(state: dict) -> dict[str, dict]:
    resolved = {}
    for slot, item_id in state.get("equipped_items", {}).items():
        item = find_equippable(state, item_id)
        if item is not None:
            resolved[slot] = item
    return resolved


def effective_bonus_stats(item: dict) -> dict:
    level = item.get("enhancement_level", 0) or 0
    stats = item.get("bonus_stats") or {}
    return {
        key: round(value * (1 + 0.1 * level))
        for key, value in stats.items()
        if isinstance(value, (int, float))
    }


def equipment_bonus(state: dict, stat: str) -> int:
    return sum(effective_bonus_stats(item).get(stat, 0) for item in equipped_items(state).values())


def total_attributes(state: dict) -> dict:
    totals = dict(state["attrs"])
    for key in ATTRIBUTE_KEYS:
        totals[key] = totals.get(key, 0) + equipment_bonus(state, key)
    return totals


def total_max_stats(state: dict) -> dict:
    stats = state["stats"]
    return {
        "hp_max": stats["hp_max"] + equipment_bonus(state, "hp"),
        "qi_max": stats["qi_max"] + equipment_bonus(state, "qi"),
        "stamina_max": stats["stamina_max"] + equipment_bonus(state, "stamina"),
    }


def use_consumable_item(state: dict, item_id: str) -> bool:
    item = find_item(state, item_id)
    if item is None:
        return False
    effects = item.get("effects") or {}
    if item.get("type") != "Medicine" and not effects:
        return False

    stats = state["stats"]
    if effects.get("hp_restore"):
        stats["hp"] = clamp_stat(stats["hp"] + effects["hp_restore"], 0, stats["hp_max"])
    if effects.get("qi_restore"):
        stats["qi"] = clamp_stat(stats["qi"] + effects["qi_restore"], 0, stats["qi_max"])
    if effects.get("cultivation_exp"):
        state["progress"]["cultivation_exp"] += effects["cultivation_exp"]
    if effects.get("permanent_hp"):
        stats["hp_max"] += effects["permanent_hp"]
        stats["hp"] += effects["permanent_hp"]
    if effects.get("permanent_qi"):
        stats["qi_max"] += effects["permanent_qi"]
        stats["qi"] += effects["permanent_qi"]
    if effects.get("qi_max_bonus"):
        stats["qi_max"] += effects["qi_max_bonus"]
    for key in ATTRIBUTE_KEYS:
        bonus = effects.get(f"permanent_{key}")
        if bonus:
            state["attrs"][key] = state["attrs"].get(key, 0) + bonus

    remove_item(state, item["id"], 1, item.get("type"))
    return True
