from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rules.combat import Enemy, auto_resolve_combat
from rules.core import DeterministicRng
from rules.cultivation import MAX_STAGE, REALMS
from rules.inventory import add_item, item_count, remove_item
from rules.loot import loot_table_for_tier
from rules.skills import add_technique
from rules.stats import add_silver, add_spirit_stones, advance_time, subtract_silver, subtract_spirit_stones

logger = logging.getLogger(__name__)

DUNGEON_ACTIONS = ("enter", "explore", "advance", "chest", "boss", "exit")
BOSS_LOOT_TABLE = "dungeon_boss"
MINI_BOSS_MULTIPLIER = 1.5
FLOOR_BOSS_MULTIPLIER = 2.0
CHEST_SILVER_RANGE = (50, 149)
CHEST_SPIRIT_STONE_CHANCE = 0.3
CHEST_SPIRIT_STONE_RANGE = (1, 10)

ENEMY_STATS = {
    "spirit_bee": {"name": "Ong Linh", "name_en": "Spirit Bee", "hp": 40, "atk": 12, "def": 5},
    "venomous_snake": {"name": "Xà Độc", "name_en": "Venomous Snake", "hp": 55, "atk": 15, "def": 8},
    "herb_guardian": {"name": "Thủ Hộ Linh Thảo", "name_en": "Herb Guardian", "hp": 70, "atk": 18, "def": 12},
    "tree_spirit": {"name": "Mộc Linh", "name_en": "Tree Spirit", "hp": 65, "atk": 16, "def": 14},
    "elder_herb_guardian": {"name": "Trưởng Lão Thủ Hộ", "name_en": "Elder Herb Guardian", "hp": 90, "atk": 20, "def": 15},
    "ancient_tree_spirit": {"name": "Cổ Mộc Linh", "name_en": "Ancient Tree Spirit", "hp": 150, "atk": 25, "def": 20},
    "fire_lizard": {"name": "Hỏa Tích", "name_en": "Fire Lizard", "hp": 70, "atk": 22, "def": 10},
    "flame_spirit": {"name": "Hỏa Linh", "name_en": "Flame Spirit", "hp": 60, "atk": 26, "def": 6},
    "magma_golem": {"name": "Nham Thạch Nhân", "name_en": "Magma Golem", "hp": 120, "atk": 24, "def": 22},
    "lava_serpent": {"name": "Dung Nham Xà", "name_en": "Lava Serpent", "hp": 130, "atk": 30, "def": 16},
    "flame_hawk": {"name": "Hỏa Ưng", "name_en": "Flame Hawk", "hp": 75, "atk": 30, "def": 9},
    "flame_specter_patriarch": {"name": "Hỏa Ảnh Tổ Sư", "name_en": "Flame Specter Patriarch", "hp": 220, "atk": 38, "def": 24},
}


class DungeonError(ValueError):
    pass


@dataclass(frozen=True)
class EnemyWave:
    id: str
    enemies: tuple[str, ...]
    spawn_chance: float = 1.0


@dataclass(frozen=True)
class DungeonFloor:
    number: int
    name: str
    name_en: str
    waves: tuple[EnemyWave, ...]
    chest_count: int
    mini_boss: str | None = None
    floor_boss: str | None = None


@dataclass(frozen=True)
class Dungeon:
    id: str
    name: str
    name_en: str
    tier: int
    recommended_realm: str
    floors: tuple[DungeonFloor, ...]
    time_limit: int
    entry_cost: dict = field(default_factory=dict)
    completion_rewards: tuple[dict, ...] = ()
    first_clear_bonus: tuple[dict, ...] = ()

    def display_name(self, locale: str) -> str:
        return self.name_en if locale == "en" else self.name


@dataclass
class DungeonOutcome:
    action: str
    narrative: str
    events: list[dict] = field(default_factory=list)
    rewards: list[dict] = field(default_factory=list)
    completed: bool = False


DUNGEONS: dict[str, Dungeon] = {
    "spirit_herb_realm": Dungeon(
        id="spirit_herb_realm",
        name="Linh Thảo Bí Cảnh",
        name_en="Spirit Herb Garden Secret Realm",
        tier=1,
        recommended_realm="PhàmNhân",
        floors=(
            DungeonFloor(
                1,
                "Ngoại Viên",
                "Outer Garden",
                (EnemyWave("wave_1_1", ("spirit_bee", "spirit_bee")), EnemyWave("wave_1_2", ("venomous_snake",), 0.7)),
                chest_count=2,
            ),
            DungeonFloor(
                2,
                "Nội Viên",
                "Inner Garden",
                (EnemyWave("wave_2_1", ("herb_guardian", "spirit_bee")), EnemyWave("wave_2_2", ("tree_spirit",), 0.5)),
                chest_count=3,
                mini_boss="elder_herb_guardian",
            ),
            DungeonFloor(
                3,
                "Thần Mộc Đường",
                "Divine Tree Hall",
                (EnemyWave("wave_3_1", ("tree_spirit", "tree_spirit", "herb_guardian")),),
                chest_count=2,
                floor_boss="ancient_tree_spirit",
            ),
        ),
        time_limit=30,
        entry_cost={"silver": 100},
        completion_rewards=(
            {"type": "exp", "amount": 100},
            {
                "type": "item",
                "item": {"id": "spirit_root_pill", "name": "Linh Căn Đan", "name_en": "Spirit Root Pill", "type": "Medicine", "rarity": "Rare", "effects": {"cultivation_exp": 200}},
            },
            {
                "type": "item",
                "chance": 0.5,
                "item": {"id": "rare_spirit_herb", "name": "Linh Thảo Quý", "name_en": "Rare Spirit Herb", "type": "Material", "rarity": "Rare"},
            },
        ),
        first_clear_bonus=(
            {
                "type": "technique",
                "technique": {"id": "wood_cultivation_manual", "name": "Mộc Linh Quyết", "name_en": "Verdant Spirit Art", "grade": "Earth", "type": "Main", "elements": ["Mộc"]},
            },
            {"type": "spirit_stones", "amount": 50},
        ),
    ),
    "phoenix_tomb": Dungeon(
        id="phoenix_tomb",
        name="Phượng Hoàng Tổ Mộ",
        name_en="Phoenix Ancestor Tomb",
        tier=2,
        recommended_realm="LuyệnKhí",
        floors=(
            DungeonFloor(
                1,
                "Hỏa Diễm Đường",
                "Flame Hall",
                (EnemyWave("wave_1_1", ("fire_lizard", "fire_lizard")), EnemyWave("wave_1_2", ("flame_spirit",), 0.6)),
                chest_count=2,
            ),
            DungeonFloor(
                2,
                "Dung Nham Hồ",
                "Lava Lake",
                (EnemyWave("wave_2_1", ("magma_golem",)),),
                chest_count=3,
                mini_boss="lava_serpent",
            ),
            DungeonFloor(
                3,
                "Phượng Vũ Các",
                "Phoenix Feather Pavilion",
                (EnemyWave("wave_3_1", ("flame_hawk", "flame_hawk")), EnemyWave("wave_3_2", ("flame_spirit",), 0.7)),
                chest_count=2,
                floor_boss="flame_specter_patriarch",
            ),
        ),
        time_limit=50,
        entry_cost={"silver": 500, "item": "fire_token"},
        completion_rewards=(
            {"type": "exp", "amount": 300},
            {
                "type": "item",
                "item": {"id": "phoenix_feather", "name": "Lông Phượng Hoàng", "name_en": "Phoenix Feather", "type": "Material", "rarity": "Epic"},
            },
            {
                "type": "item",
                "chance": 0.7,
                "item": {"id": "fire_essence", "name": "Hỏa Tinh", "name_en": "Fire Essence", "type": "Material", "rarity": "Rare"},
            },
            {"type": "spirit_stones", "amount": 100},
        ),
        first_clear_bonus=(
            {
                "type": "technique",
                "technique": {"id": "phoenix_fire_manual", "name": "Phượng Hỏa Kinh", "name_en": "Phoenix Fire Manual", "grade": "Heaven", "type": "Main", "elements": ["Hỏa"]},
            },
            {
                "type": "item",
                "item": {"id": "phoenix_blood_pill", "name": "Phượng Huyết Đan", "name_en": "Phoenix Blood Pill", "type": "Medicine", "rarity": "Legendary", "effects": {"permanent_hp": 50}},
            },
        ),
    ),
}


def init_dungeon_state() -> dict:
    return {
        "dungeon_id": None,
        "current_floor": 0,
        "floors_cleared": [],
        "turns_remaining": None,
        "turns_spent": 0,
        "collected_chests": [],
        "boss_defeated": False,
        "completed_dungeons": {},
    }


def get_dungeon(dungeon_id: str) -> Dungeon:
    dungeon = DUNGEONS.get(dungeon_id)
    if dungeon is None:
        raise DungeonError(f"Unknown dungeon: {dungeon_id}")
    return dungeon


def _dungeon_state(state: dict) -> dict:
    return state.setdefault("dungeon", init_dungeon_state())


def _text(locale: str, vi: str, en: str) -> str:
    return en if locale == "en" else vi


def _realm_index(realm: str | None) -> int:
    return REALMS.index(realm) if realm in REALMS else 0


def difficulty_rating(dungeon: Dungeon, realm: str | None) -> str:
    gap = _realm_index(realm) - _realm_index(dungeon.recommended_realm)
    if gap >= 2:
        return "easy"
    if gap >= 0:
        return "normal"
    if gap >= -1:
        return "hard"
    return "deadly"


def list_dungeons(state: dict, locale: str = "vi") -> list[dict]:
    completed = _dungeon_state(state)["completed_dungeons"]
    realm = state["progress"].get("realm")
    return [
        {
            "id": dungeon.id,
            "name": dungeon.display_name(locale),
            "tier": dungeon.tier,
            "floors": len(dungeon.floors),
            "time_limit": dungeon.time_limit,
            "entry_cost": dict(dungeon.entry_cost),
            "recommended_realm": dungeon.recommended_realm,
            "difficulty": difficulty_rating(dungeon, realm),
            "times_cleared": (completed.get(dungeon.id) or {}).get("times_cleared", 0),
        }
        for dungeon in DUNGEONS.values()
    ]


def current_dungeon(state: dict) -> Dungeon | None:
    dungeon_id = _dungeon_state(state).get("dungeon_id")
    return DUNGEONS.get(dungeon_id) if dungeon_id else None


def current_floor(state: dict) -> DungeonFloor | None:
    dungeon = current_dungeon(state)
    if dungeon is None:
        return None
    number = _dungeon_state(state)["current_floor"]
    return dungeon.floors[number - 1] if 1 <= number <= len(dungeon.floors) else None


def _require_inside(state: dict) -> tuple[Dungeon, DungeonFloor]:
    dungeon = current_dungeon(state)
    floor = current_floor(state)
    if dungeon is None or floor is None:
        raise DungeonError("Not in a dungeon")
    return dungeon, floor


def entry_block_reason(state: dict, dungeon: Dungeon) -> str | None:
    if _dungeon_state(state).get("dungeon_id"):
        return "Already inside a dungeon"
    if _realm_index(state["progress"].get("realm")) < _realm_index(dungeon.recommended_realm):
        return f"Requires {dungeon.recommended_realm} realm"
    cost = dungeon.entry_cost
    inventory = state["inventory"]
    if cost.get("silver") and inventory["silver"] < cost["silver"]:
        return f"Need {cost['silver'] - inventory['silver']} more silver"
    if cost.get("spirit_stones") and inventory["spirit_stones"] < cost["spirit_stones"]:
        return f"Need {cost['spirit_stones'] - inventory['spirit_stones']} more spirit stones"
    if cost.get("item") and item_count(state, cost["item"]) < 1:
        return f"Missing required item: {cost['item']}"
    return None


def enter_dungeon(state: dict, dungeon_id: str, locale: str = "vi") -> DungeonOutcome:
    dungeon = get_dungeon(dungeon_id)
    reason = entry_block_reason(state, dungeon)
    if reason:
        raise DungeonError(reason)

    cost = dungeon.entry_cost
    if cost.get("silver"):
        subtract_silver(state, cost["silver"])
    if cost.get("spirit_stones"):
        subtract_spirit_stones(state, cost["spirit_stones"])
    if cost.get("item"):
        remove_item(state, cost["item"])

    progress = _dungeon_state(state)
    progress.update(
        dungeon_id=dungeon.id,
        current_floor=1,
        floors_cleared=[],
        turns_remaining=dungeon.time_limit,
        turns_spent=0,
        collected_chests=[],
        boss_defeated=False,
    )
    logger.info("Entered dungeon %s", dungeon.id)
    floor = dungeon.floors[0]
    return DungeonOutcome(
        action="enter",
        narrative=_text(
            locale,
            f"Bạn bước vào {dungeon.name}. Tầng 1: {floor.name}.",
            f"You enter the {dungeon.name_en}. Floor 1: {floor.name_en}.",
        ),
        events=[{"type": "dungeon_enter", "data": {"dungeon_id": dungeon.id, "floor": 1}}],
    )


def _player_level(state: dict) -> int:
    progress = state["progress"]
    return _realm_index(progress.get("realm")) * MAX_STAGE + (progress.get("realm_stage") or 0) + 1


def build_enemy(state: dict, enemy_id: str, dungeon: Dungeon, rng: DeterministicRng, *, multiplier: float = 1.0) -> Enemy:
    base = ENEMY_STATS.get(enemy_id) or {
        "name": enemy_id.replace("_", " ").title(),
        "name_en": enemy_id.replace("_", " ").title(),
        "hp": 60,
        "atk": 20,
        "def": 10,
    }
    scale = (1 + (_player_level(state) - 1) * 0.1) * multiplier
    hp = math.floor(base["hp"] * scale)
    return Enemy(
        id=f"{enemy_id}_{rng.random_int(1000, 9999, label='dungeon_enemy_id')}",
        name=base["name"],
        name_en=base["name_en"],
        hp=hp,
        hp_max=hp,
        atk=math.floor(base["atk"] * scale),
        defense=math.floor(base["def"] * scale),
        behavior="Aggressive",
        loot_table_id=BOSS_LOOT_TABLE if multiplier > 1 else loot_table_for_tier(dungeon.tier),
    )


def pick_enemy_wave(floor: DungeonFloor, rng: DeterministicRng) -> EnemyWave | None:
    spawned = [wave for wave in floor.waves if rng.chance(wave.spawn_chance, label=f"wave_{wave.id}")]
    if not spawned:
        return None
    return rng.random_element(spawned, label="enemy_wave")


def _tick(state: dict) -> bool:
    """Spends one dungeon turn. Returns True when the time limit ran out."""
    progress = _dungeon_state(state)
    progress["turns_spent"] += 1
    advance_time(state, 1)
    if progress.get("turns_remaining") is None:
        return False
    progress["turns_remaining"] -= 1
    return progress["turns_remaining"] <= 0


def _leave(state: dict, completed: bool) -> None:
    progress = _dungeon_state(state)
    if completed and progress.get("dungeon_id"):
        record = progress["completed_dungeons"].get(progress["dungeon_id"])
        progress["completed_dungeons"][progress["dungeon_id"]] = {
            "cleared_at": datetime.now(timezone.utc).isoformat(),
            "best_time": min(record["best_time"], progress["turns_spent"]) if record else progress["turns_spent"],
            "times_cleared": (record["times_cleared"] + 1) if record else 1,
        }
    completed_dungeons = progress["completed_dungeons"]
    progress.clear()
    progress.update(init_dungeon_state(), completed_dungeons=completed_dungeons)


def _fight(state: dict, enemies: list[Enemy], rng: DeterministicRng, locale: str) -> tuple[bool, list[str], list[dict]]:
    lines: list[str] = []
    events: list[dict] = []
    for enemy in enemies:
        result = auto_resolve_combat(state, enemy, rng, locale=locale)
        lines.append(result.narrative)
        events.extend(result.events)
        if not result.victory:
            return False, lines, events
    return True, lines, events


def _defeated(state: dict, dungeon: Dungeon, lines: list[str], events: list[dict], locale: str) -> DungeonOutcome:
    _leave(state, completed=False)
    lines.append(_text(locale, "Bạn bị đẩy ra khỏi bí cảnh.", "You are driven out of the dungeon."))
    events.append({"type": "dungeon_defeat", "data": {"dungeon_id": dungeon.id}})
    logger.info("Run left dungeon %s after a defeat", dungeon.id)
    return DungeonOutcome(action="defeat", narrative="\n".join(lines), events=events)


def explore_floor(state: dict, rng: DeterministicRng, locale: str = "vi") -> DungeonOutcome:
    """Spends a turn on the current floor and fights whatever wave turns up.

    The floor counts as cleared once its wave (and mini boss, if any) falls.
    Running out of time or losing a fight ends the run's stay without rewards.
    """
    dungeon, floor = _require_inside(state)
    progress = _dungeon_state(state)
    if state["stats"]["hp"] <= 0:
        raise DungeonError("Too injured to explore")

    if _tick(state):
        _leave(state, completed=False)
        return DungeonOutcome(
            action="expired",
            narrative=_text(locale, "Bí cảnh đóng lại, bạn bị đẩy ra ngoài.", "The realm closes and casts you out."),
            events=[{"type": "dungeon_expired", "data": {"dungeon_id": dungeon.id}}],
        )

    lines = [_text(locale, f"Bạn khám phá {floor.name}.", f"You explore the {floor.name_en}.")]
    events: list[dict] = []
    enemies: list[Enemy] = []
    wave = pick_enemy_wave(floor, rng)
    if wave is not None:
        enemies.extend(build_enemy(state, enemy_id, dungeon, rng) for enemy_id in wave.enemies)
        events.append({"type": "enemy_wave", "data": {"wave_id": wave.id, "enemies": list(wave.enemies)}})
    if floor.mini_boss and floor.number not in progress["floors_cleared"]:
        enemies.append(build_enemy(state, floor.mini_boss, dungeon, rng, multiplier=MINI_BOSS_MULTIPLIER))

    won, fight_lines, fight_events = _fight(state, enemies, rng, locale)
    lines.extend(fight_lines)
    events.extend(fight_events)
    if not won:
        return _defeated(state, dungeon, lines, events, locale)

    if floor.number not in progress["floors_cleared"]:
        progress["floors_cleared"].append(floor.number)
        events.append({"type": "floor_cleared", "data": {"floor": floor.number}})
    return DungeonOutcome(action="explore", narrative="\n".join(lines), events=events)


def advance_floor(state: dict, locale: str = "vi") -> DungeonOutcome:
    dungeon, floor = _require_inside(state)
    progress = _dungeon_state(state)
    if floor.number not in progress["floors_cleared"]:
        raise DungeonError("Clear this floor before going deeper")
    if floor.number >= len(dungeon.floors):
        raise DungeonError("Already on the final floor")
    progress["current_floor"] = floor.number + 1
    next_floor = dungeon.floors[floor.number]
    return DungeonOutcome(
        action="advance",
        narrative=_text(
            locale,
            f"Bạn xuống tầng {next_floor.number}: {next_floor.name}.",
            f"You descend to floor {next_floor.number}: {next_floor.name_en}.",
        ),
        events=[{"type": "dungeon_floor", "data": {"floor": next_floor.number}}],
    )


def collect_chest(state: dict, rng: DeterministicRng, locale: str = "vi") -> DungeonOutcome:
    _, floor = _require_inside(state)
    progress = _dungeon_state(state)
    if floor.number not in progress["floors_cleared"]:
        raise DungeonError("Clear this floor before opening its chests")
    opened = [chest for chest in progress["collected_chests"] if chest.startswith(f"floor_{floor.number}_")]
    if len(opened) >= floor.chest_count:
        raise DungeonError("No chests left on this floor")

    chest_id = f"floor_{floor.number}_{len(opened) + 1}"
    progress["collected_chests"].append(chest_id)
    silver = rng.random_int(*CHEST_SILVER_RANGE, label="chest_silver")
    spirit_stones = 0
    if rng.chance(CHEST_SPIRIT_STONE_CHANCE, label="chest_spirit_stone_chance"):
        spirit_stones = rng.random_int(*CHEST_SPIRIT_STONE_RANGE, label="chest_spirit_stones")
    add_silver(state, silver)
    add_spirit_stones(state, spirit_stones)
    rewards = [{"type": "silver", "amount": silver}]
    if spirit_stones:
        rewards.append({"type": "spirit_stones", "amount": spirit_stones})
    return DungeonOutcome(
        action="chest",
        narrative=_text(locale, f"Bạn mở rương và nhận {silver} bạc.", f"You open a chest and find {silver} silver."),
        events=[{"type": "chest_opened", "data": {"chest_id": chest_id}}],
        rewards=rewards,
    )


def is_dungeon_complete(state: dict) -> bool:
    dungeon = current_dungeon(state)
    progress = _dungeon_state(state)
    return dungeon is not None and progress["current_floor"] == len(dungeon.floors) and progress["boss_defeated"]


def challenge_boss(state: dict, rng: DeterministicRng, locale: str = "vi") -> DungeonOutcome:
    dungeon, floor = _require_inside(state)
    progress = _dungeon_state(state)
    if not floor.floor_boss:
        raise DungeonError("There is no boss on this floor")
    if progress["boss_defeated"]:
        raise DungeonError("The boss is already defeated")
    if floor.number not in progress["floors_cleared"]:
        raise DungeonError("Clear this floor before facing its boss")
    if state["stats"]["hp"] <= 0:
        raise DungeonError("Too injured to fight")

    boss = build_enemy(state, floor.floor_boss, dungeon, rng, multiplier=FLOOR_BOSS_MULTIPLIER)
    won, lines, events = _fight(state, [boss], rng, locale)
    if not won:
        return _defeated(state, dungeon, lines, events, locale)
    progress["boss_defeated"] = True
    events.append({"type": "boss_defeated", "data": {"dungeon_id": dungeon.id, "boss": floor.floor_boss}})
    logger.info("Boss %s defeated in %s", floor.floor_boss, dungeon.id)
    return DungeonOutcome(action="boss", narrative="\n".join(lines), events=events, completed=True)


def completion_rewards(state: dict, dungeon: Dungeon, rng: DeterministicRng) -> list[dict]:
    rewards = [
        reward
        for reward in dungeon.completion_rewards
        if "chance" not in reward or rng.chance(reward["chance"], label="dungeon_reward")
    ]
    if dungeon.id not in _dungeon_state(state)["completed_dungeons"]:
        rewards.extend(dungeon.first_clear_bonus)
    return rewards


def grant_reward(state: dict, reward: dict) -> None:
    kind = reward["type"]
    if kind == "exp":
        state["progress"]["cultivation_exp"] += reward["amount"]
    elif kind == "silver":
        add_silver(state, reward["amount"])
    elif kind == "spirit_stones":
        add_spirit_stones(state, reward["amount"])
    elif kind == "item":
        add_item(state, {**reward["item"], "quantity": reward.get("quantity") or 1})
    elif kind == "technique":
        add_technique(state, reward["technique"])
    else:
        logger.warning("Unknown dungeon reward type %s", kind)


def exit_dungeon(state: dict, rng: DeterministicRng, locale: str = "vi") -> DungeonOutcome:
    dungeon = current_dungeon(state)
    if dungeon is None:
        raise DungeonError("Not in a dungeon")
    completed = is_dungeon_complete(state)
    rewards = completion_rewards(state, dungeon, rng) if completed else []
    for reward in rewards:
        grant_reward(state, reward)
    _leave(state, completed)
    logger.info("Left dungeon %s (completed=%s)", dungeon.id, completed)
    return DungeonOutcome(
        action="exit",
        narrative=_text(
            locale,
            f"Bạn chinh phục {dungeon.name}!" if completed else f"Bạn rời khỏi {dungeon.name}.",
            f"You conquered the {dungeon.name_en}!" if completed else f"You leave the {dungeon.name_en}.",
        ),
        events=[{"type": "dungeon_exit", "data": {"dungeon_id": dungeon.id, "completed": completed}}],
        rewards=[dict(reward) for reward in rewards],
        completed=completed,
    )
