from __future__ import annotations

from dataclasses import dataclass, field

from rules.core import DeterministicRng
from rules.inventory import EQUIPPABLE_TYPES, effective_bonus_stats, find_equippable, item_count, remove_item
from rules.stats import subtract_silver

MAX_ENHANCEMENT_LEVEL = 10

ENHANCEMENT_CONFIG = {
    1: {"silver": 100, "success_rate": 1.0},
    2: {"silver": 200, "success_rate": 1.0},
    3: {"silver": 400, "success_rate": 0.95},
    4: {"silver": 800, "success_rate": 0.90},
    5: {"silver": 1500, "success_rate": 0.85},
    6: {"silver": 3000, "success_rate": 0.75},
    7: {"silver": 5000, "success_rate": 0.65},
    8: {"silver": 8000, "success_rate": 0.55},
    9: {"silver": 12000, "success_rate": 0.45},
    10: {"silver": 20000, "success_rate": 0.35},
}

ENHANCEMENT_MATERIALS = {
    1: [("enhancement_stone_common", 1)],
    2: [("enhancement_stone_common", 2)],
    3: [("enhancement_stone_common", 3)],
    4: [("enhancement_stone_uncommon", 1)],
    5: [("enhancement_stone_uncommon", 2)],
    6: [("enhancement_stone_uncommon", 3)],
    7: [("enhancement_stone_rare", 1)],
    8: [("enhancement_stone_rare", 2)],
    9: [("enhancement_stone_rare", 3)],
    10: [("enhancement_stone_epic", 1)],
}


class EnhancementError(ValueError):
    pass


@dataclass
class EnhancementCost:
    silver: int
    success_rate: float
    materials: list[dict] = field(default_factory=list)
    can_afford: bool = False


@dataclass
class EnhancementResult:
    success: bool
    previous_level: int
    new_level: int
    silver_spent: int
    materials_spent: list[dict] = field(default_factory=list)
    stat_increase: dict = field(default_factory=dict)


def can_enhance(item: dict | None) -> bool:
    if not item or item.get("type") not in EQUIPPABLE_TYPES:
        return False
    level = item.get("enhancement_level") or 0
    return level < (item.get("max_enhancement") or MAX_ENHANCEMENT_LEVEL)


def enhancement_cost(item: dict, state: dict) -> EnhancementCost:
    next_level = (item.get("enhancement_level") or 0) + 1
    config = ENHANCEMENT_CONFIG.get(next_level)
    if config is None:
        return EnhancementCost(silver=0, success_rate=0.0)
    materials = [
        {
            "id": material_id,
            "quantity": quantity,
            "has_enough": item_count(state, material_id) >= quantity,
        }
        for material_id, quantity in ENHANCEMENT_MATERIALS[next_level]
    ]
    affordable = state["inventory"]["silver"] >= config["silver"] and all(
        material["has_enough"] for material in materials
    )
    return EnhancementCost(
        silver=config["silver"],
        success_rate=config["success_rate"],
        materials=materials,
        can_afford=affordable,
    )


def enhanced_stats(base_stats: dict, level: int) -> dict:
    return effective_bonus_stats({"bonus_stats": base_stats, "enhancement_level": level})


def stat_difference(item: dict) -> dict:
    base = item.get("bonus_stats") or {}
    level = item.get("enhancement_level") or 0
    current = enhanced_stats(base, level)
    upcoming = enhanced_stats(base, level + 1)
    return {stat: upcoming[stat] - current[stat] for stat in current if upcoming[stat] != current[stat]}


def attempt_enhancement(state: dict, item_id: str, rng: DeterministicRng) -> EnhancementResult:
    item = find_equippable(state, item_id)
    if item is None:
        raise EnhancementError(f"Item not found: {item_id}")
    if not can_enhance(item):
        raise EnhancementError(f"Item cannot be enhanced further: {item_id}")

    cost = enhancement_cost(item, state)
    if not cost.can_afford:
        raise EnhancementError("Not enough silver or materials to enhance.")

    previous_level = item.get("enhancement_level") or 0
    item["enhance_attempts"] = (item.get("enhance_attempts") or 0) + 1
    subtract_silver(state, cost.silver)
    spent = []
    for material in cost.materials:
        remove_item(state, material["id"], material["quantity"])
        spent.append({"id": material["id"], "quantity": material["quantity"]})

    increase = stat_difference(item)
    success = rng.random(label="enhancement") < cost.success_rate
    if success:
        item["enhancement_level"] = previous_level + 1

    return EnhancementResult(
        success=success,
        previous_level=previous_level,
        new_level=item.get("enhancement_level") or 0,
        silver_spent=cost.silver,
        materials_spent=spent,
        stat_increase=increase if success else {},
    )
