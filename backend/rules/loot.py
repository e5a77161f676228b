from __future__ import annotations

from dataclasses import dataclass, field

from rules.core import DeterministicRng

STORAGE_RING_ITEMS = [
    {"id": "storage_ring_basic", "name": "Trữ Vật Giới (Cơ Bản)", "name_en": "Basic Storage Ring", "type": "Accessory", "rarity": "Common", "equipment_slot": "Accessory", "effects": {"storage_capacity": 10}, "weight": 15},
    {"id": "storage_ring_uncommon", "name": "Trữ Vật Giới (Tốt)", "name_en": "Uncommon Storage Ring", "type": "Accessory", "rarity": "Uncommon", "equipment_slot": "Accessory", "effects": {"storage_capacity": 20}, "weight": 10},
    {"id": "storage_ring_rare", "name": "Trữ Vật Giới (Hiếm)", "name_en": "Rare Storage Ring", "type": "Accessory", "rarity": "Rare", "equipment_slot": "Accessory", "effects": {"storage_capacity": 35}, "weight": 5},
    {"id": "storage_ring_epic", "name": "Trữ Vật Giới (Sử Thi)", "name_en": "Epic Storage Ring", "type": "Accessory", "rarity": "Epic", "equipment_slot": "Accessory", "effects": {"storage_capacity": 50}, "weight": 2},
    {"id": "storage_ring_legendary", "name": "Vô Tận Trữ Vật Giới", "name_en": "Infinite Storage Ring", "type": "Accessory", "rarity": "Legendary", "equipment_slot": "Accessory", "effects": {"storage_capacity": 100}, "weight": 1},
]

ENHANCEMENT_MATERIALS = [
    {"id": "enhancement_stone_common", "name": "Đá Cường Hóa (Thường)", "name_en": "Enhancement Stone (Common)", "type": "Material", "rarity": "Common", "weight": 40},
    {"id": "enhancement_stone_uncommon", "name": "Đá Cường Hóa (Tốt)", "name_en": "Enhancement Stone (Uncommon)", "type": "Material", "rarity": "Uncommon", "weight": 25},
    {"id": "enhancement_stone_rare", "name": "Đá Cường Hóa (Hiếm)", "name_en": "Enhancement Stone (Rare)", "type": "Material", "rarity": "Rare", "weight": 15},
    {"id": "enhancement_stone_epic", "name": "Đá Cường Hóa (Sử Thi)", "name_en": "Enhancement Stone (Epic)", "type": "Material", "rarity": "Epic", "weight": 5},
]

LOOT_TABLES: dict[str, dict] = {
    "common_herbs": {
        "tier": 1,
        "silver_range": (20, 80),
        "spirit_stone_chance": 0.3,
        "spirit_stone_range": (1, 5),
        "entries": [
            {"id": "lingzhi_grass", "name": "Linh Chi Thảo", "name_en": "Spirit Grass", "type": "Material", "rarity": "Common", "weight": 50},
            {"id": "moonlight_flower", "name": "Nguyệt Quang Hoa", "name_en": "Moonlight Flower", "type": "Material", "rarity": "Uncommon", "effects": {"qi_restore": 20}, "weight": 20},
            {"id": "healing_herb", "name": "Chỉ Huyết Thảo", "name_en": "Healing Herb", "type": "Medicine", "rarity": "Common", "effects": {"hp_restore": 30}, "weight": 30},
        ],
    },
    "bandit_loot": {
        "tier": 1,
        "silver_range": (50, 150),
        "spirit_stone_chance": 0.4,
        "spirit_stone_range": (2, 8),
        "entries": [
            {"id": "iron_sword", "name": "Kiếm Sắt", "name_en": "Iron Sword", "type": "Equipment", "rarity": "Common", "equipment_slot": "Weapon", "bonus_stats": {"str": 2}, "weight": 30},
            {"id": "leather_armor", "name": "Giáp Da", "name_en": "Leather Armor", "type": "Equipment", "rarity": "Common", "equipment_slot": "Chest", "bonus_stats": {"hp": 20}, "weight": 25},
            {"id": "healing_pill", "name": "Hồi Huyết Đan", "name_en": "Healing Pill", "type": "Medicine", "rarity": "Common", "effects": {"hp_restore": 50}, "weight": 45},
            ENHANCEMENT_MATERIALS[0],
        ],
    },
    "cave_treasure": {
        "tier": 2,
        "silver_range": (100, 300),
        "spirit_stone_chance": 0.6,
        "spirit_stone_range": (5, 15),
        "entries": [
            {"id": "qi_condensation_manual", "name": "Luyện Khí Tâm Pháp", "name_en": "Qi Condensation Manual", "type": "Manual", "rarity": "Uncommon", "effects": {"cultivation_speed": 1.2}, "weight": 20},
            {"id": "spirit_stone_fragment", "name": "Mảnh Linh Thạch", "name_en": "Spirit Stone Fragment", "type": "Material", "rarity": "Rare", "weight": 15},
            {"id": "jade_pendant", "name": "Ngọc Bội", "name_en": "Jade Pendant", "type": "Equipment", "rarity": "Rare", "equipment_slot": "Accessory", "bonus_stats": {"luck": 2}, "weight": 10},
            {"id": "qi_gathering_pill", "name": "Tụ Khí Đan", "name_en": "Qi Gathering Pill", "type": "Medicine", "rarity": "Uncommon", "effects": {"qi_max_bonus": 20}, "weight": 25},
            ENHANCEMENT_MATERIALS[0],
            ENHANCEMENT_MATERIALS[1],
        ],
    },
    "dungeon_boss": {
        "tier": 3,
        "silver_range": (300, 800),
        "spirit_stone_chance": 0.8,
        "spirit_stone_range": (10, 30),
        "entries": [
            {"id": "spirit_sword", "name": "Linh Kiếm", "name_en": "Spirit Sword", "type": "Equipment", "rarity": "Rare", "equipment_slot": "Weapon", "bonus_stats": {"str": 8, "agi": 3}, "weight": 20},
            {"id": "mystic_robe", "name": "Huyền Bào", "name_en": "Mystic Robe", "type": "Equipment", "rarity": "Rare", "equipment_slot": "Chest", "bonus_stats": {"int": 5, "qi": 30}, "weight": 20},
            {"id": "foundation_pill", "name": "Trúc Cơ Đan", "name_en": "Foundation Pill", "type": "Medicine", "rarity": "Epic", "effects": {"cultivation_exp": 500}, "weight": 10},
            ENHANCEMENT_MATERIALS[1],
            ENHANCEMENT_MATERIALS[2],
            ENHANCEMENT_MATERIALS[3],
            STORAGE_RING_ITEMS[1],
            STORAGE_RING_ITEMS[2],
        ],
    },
    "ancient_treasure": {
        "tier": 4,
        "silver_range": (500, 1500),
        "spirit_stone_chance": 1.0,
        "spirit_stone_range": (20, 50),
        "entries": [
            {"id": "immortal_blade", "name": "Tiên Đạo Kiếm", "name_en": "Immortal Blade", "type": "Equipment", "rarity": "Epic", "equipment_slot": "Weapon", "bonus_stats": {"str": 15, "agi": 8, "int": 5}, "weight": 10},
            {"id": "dragon_scale_armor", "name": "Long Lân Giáp", "name_en": "Dragon Scale Armor", "type": "Equipment", "rarity": "Epic", "equipment_slot": "Chest", "bonus_stats": {"hp": 100, "str": 5, "qi": 50}, "weight": 10},
            {"id": "heaven_defying_pill", "name": "Nghịch Thiên Đan", "name_en": "Heaven Defying Pill", "type": "Medicine", "rarity": "Legendary", "effects": {"cultivation_exp": 2000, "permanent_luck": 1}, "weight": 3},
            ENHANCEMENT_MATERIALS[2],
            ENHANCEMENT_MATERIALS[3],
            STORAGE_RING_ITEMS[2],
            STORAGE_RING_ITEMS[3],
            STORAGE_RING_ITEMS[4],
        ],
    },
}

ITEM_FIELDS = ("id", "name", "name_en", "type", "rarity", "effects", "equipment_slot", "bonus_stats", "level_requirement")


@dataclass
class LootResult:
    items: list[dict] = field(default_factory=list)
    silver: int = 0
    spirit_stones: int = 0

    def as_event_data(self) -> dict:
        return {"silver": self.silver, "spiritStones": self.spirit_stones, "items": self.items}


def _item_from_entry(entry: dict) -> dict:
    item = {key: entry[key] for key in ITEM_FIELDS if entry.get(key) is not None}
    item["quantity"] = 1
    return item


def generate_loot(table_id: str, rng: DeterministicRng) -> LootResult:
    table = LOOT_TABLES.get(table_id)
    if table is None:
        return LootResult()

    silver = rng.random_int(*table["silver_range"], label="loot_silver")
    spirit_stones = 0
    if rng.chance(table["spirit_stone_chance"], label="loot_spirit_stone_chance"):
        spirit_stones = rng.random_int(*table["spirit_stone_range"], label="loot_spirit_stones")

    items = []
    for _ in range(rng.random_int(1, 3, label="loot_count")):
        entry = rng.weighted_choice(table["entries"], label="loot_entry")
        if entry is not None:
            items.append(_item_from_entry(entry))
    return LootResult(items=items, silver=silver, spirit_stones=spirit_stones)


def validate_loot(table_id: str, items: list[dict]) -> bool:
    table = LOOT_TABLES.get(table_id)
    if table is None:
        return False
    valid_ids = {entry["id"] for entry in table["entries"]}
    return all(item.get("id") in valid_ids for item in items)


def loot_table_for_tier(tier: int) -> str:
    if tier >= 4:
        return "ancient_treasure"
    if tier == 3:
        return "dungeon_boss"
    if tier == 2:
        return "cave_treasure"
    return "common_herbs"
