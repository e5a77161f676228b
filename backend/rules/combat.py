from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field

from rules.core import DeterministicRng
from rules.inventory import equipment_bonus, merge_items, total_attributes
from rules.loot import LootResult, generate_loot
from rules.skills import find_skill, grant_skill_exp, tick_cooldowns
from rules.stats import add_silver, add_spirit_stones, update_hp, update_qi

ACTIONS = ("attack", "defend", "qi_attack", "skill")
MAX_ROUNDS = 20
BASE_PLAYER_ATTACK = 10
BASE_PLAYER_DEFENSE = 5
DEFEND_STANCE_BONUS = 8
QI_ATTACK_COST = 10
AUTO_QI_ATTACK_CHANCE = 0.3

BASE_ACCURACY = 0.85
MAX_ACCURACY = 0.98
MAX_DODGE = 0.40
SKILL_EXP_RANGE = (5, 15)

REALM_MULTIPLIERS = {
    "PhàmNhân": 1,
    "LuyệnKhí": 2,
    "TrúcCơ": 4,
    "KếtĐan": 8,
    "NguyênAnh": 16,
}

DIFFICULTY_MULTIPLIERS = {"easy": 0.7, "medium": 1.0, "hard": 1.5}

DIFFICULTY_LOOT_TABLES = {
    "easy": "common_herbs",
    "medium": "bandit_loot",
    "hard": "cave_treasure",
}

MONSTER_TYPES = [
    {"name": "Sói Hoang", "name_en": "Wild Wolf", "behavior": "Aggressive"},
    {"name": "Hổ Ma Thú", "name_en": "Demonic Tiger", "behavior": "Aggressive"},
    {"name": "Yêu Quái", "name_en": "Demon", "behavior": "Balanced"},
    {"name": "Tu Sĩ Tà Đạo", "name_en": "Evil Cultivator", "behavior": "Balanced"},
    {"name": "Rắn Linh", "name_en": "Spirit Snake", "behavior": "Defensive"},
    {"name": "Thổ Phỉ", "name_en": "Bandit", "behavior": "Aggressive"},
]


@dataclass
class Enemy:
    id: str
    name: str
    name_en: str
    hp: int
    hp_max: int
    atk: int
    defense: int
    behavior: str
    loot_table_id: str

    def display_name(self, locale: str) -> str:
        return self.name_en if locale == "en" and self.name_en else self.name

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RoundResult:
    action: str
    hit: bool
    crit: bool
    dodged: bool
    player_damage: int
    enemy_damage: int
    outcome: str
    narrative: str
    events: list[dict] = field(default_factory=list)
    skill_levels_gained: int = 0

    @property
    def victory(self) -> bool:
        return self.outcome == "victory"


@dataclass
class CombatResult:
    victory: bool
    rounds: int
    narrative: str
    events: list[dict] = field(default_factory=list)
    loot: LootResult | None = None


def generate_enemy(state: dict, difficulty: str, rng: DeterministicRng) -> Enemy:
    if difficulty not in DIFFICULTY_MULTIPLIERS:
        raise ValueError(f"Unknown difficulty: {difficulty}")
    progress = state["progress"]
    stage = progress.get("realm_stage", 0)
    scale = REALM_MULTIPLIERS.get(progress.get("realm"), 1) * DIFFICULTY_MULTIPLIERS[difficulty]

    monster = rng.random_element(MONSTER_TYPES, label="enemy_type")
    hp = math.floor((30 + stage * 20) * scale)
    return Enemy(
        id=f"enemy_{state.get('turn_count', 0)}_{rng.random_int(1000, 9999, label='enemy_id')}",
        name=monster["name"],
        name_en=monster["name_en"],
        hp=hp,
        hp_max=hp,
        atk=math.floor((8 + stage * 3) * scale),
        defense=math.floor((3 + stage * 2) * scale),
        behavior=monster["behavior"],
        loot_table_id=DIFFICULTY_LOOT_TABLES[difficulty],
    )


def accuracy(attrs: dict) -> float:
    return min(MAX_ACCURACY, BASE_ACCURACY + attrs.get("perception", 0) * 0.01)


def dodge_chance(attrs: dict) -> float:
    chance = attrs.get("agi", 0) * 0.01 + attrs.get("perception", 0) * 0.005 + attrs.get("luck", 0) * 0.005
    return min(MAX_DODGE, chance)


def physical_damage(attack: int, defense: int, strength: int, luck: int, rng: DeterministicRng) -> tuple[int, bool]:
    base = max(1, attack + math.floor(strength / 2) - defense)
    variance = rng.random_int(-2, 5, label="damage_variance")
    crit = rng.chance(0.15 + strength * 0.002 + luck * 0.005, label="physical_crit")
    return math.floor(base * (1.5 if crit else 1.0) + variance), crit


def qi_damage(intelligence: int, strength: int, defense: int, luck: int, rng: DeterministicRng) -> tuple[int, bool]:
    # Qi attacks ignore half of the target's defense.
    base = max(1, intelligence * 2 + math.floor(strength / 2) - math.floor(defense / 2))
    variance = rng.random_int(-3, 6, label="qi_variance")
    crit = rng.chance(0.20 + intelligence * 0.003 + luck * 0.005, label="qi_crit")
    multiplier = 2.0 + luck * 0.01 if crit else 1.0
    return math.floor(base * multiplier + variance), crit


def player_defense(state: dict, attrs: dict, defending: bool) -> int:
    defense = BASE_PLAYER_DEFENSE + math.floor(attrs.get("agi", 0) / 3)
    if defending:
        defense += DEFEND_STANCE_BONUS
    defense += math.floor(equipment_bonus(state, "hp") / 20) + math.floor(equipment_bonus(state, "agi") / 3)
    return defense


def _text(locale: str, vi: str, en: str) -> str:
    return en if locale == "en" else vi


def _usable_skill(state: dict, skill_id: str | None) -> dict | None:
    skill = find_skill(state, skill_id) if skill_id else None
    if skill is None or skill.get("current_cooldown"):
        return None
    if state["stats"]["qi"] < skill.get("qi_cost", 0):
        return None
    return skill


def resolve_round(
    state: dict,
    enemy: Enemy,
    action: str,
    rng: DeterministicRng,
    skill_id: str | None = None,
    *,
    locale: str = "vi",
) -> RoundResult:
    """Resolves one exchange: the player acts, then a surviving enemy swings back.

    Mutates ``state`` (hp, qi, skill exp and cooldowns) and ``enemy.hp``.
    """
    if action not in ACTIONS:
        raise ValueError(f"Unknown combat action: {action}")

    attrs = total_attributes(state)
    parts: list[str] = []
    events: list[dict] = []
    hit = crit = dodged = False
    player_damage = enemy_damage = 0
    levels_gained = 0
    used_skill: dict | None = None

    if action == "qi_attack" and state["stats"]["qi"] < QI_ATTACK_COST:
        parts.append(_text(locale, "Không đủ Linh lực! Bạn tấn công thường.", "Not enough Qi! You attack normally."))
        action = "attack"
    if action == "skill":
        used_skill = _usable_skill(state, skill_id)
        if used_skill is None:
            parts.append(_text(locale, "Không thể dùng kỹ năng! Bạn tấn công thường.", "Cannot use skill! You attack normally."))
            action = "attack"

    if action == "defend":
        parts.append(_text(locale, "Bạn phòng thủ.", "You take a defensive stance."))
    else:
        if action == "qi_attack":
            update_qi(state, -QI_ATTACK_COST)
        elif used_skill is not None:
            update_qi(state, -used_skill.get("qi_cost", 0))

        hit = rng.chance(accuracy(attrs), label="player_accuracy")
        if not hit:
            parts.append(_text(locale, "Đòn đánh của bạn trượt!", "Your strike misses!"))
        elif action == "qi_attack":
            player_damage, crit = qi_damage(attrs["int"], attrs["str"], enemy.defense, attrs["luck"], rng)
        else:
            player_damage, crit = physical_damage(BASE_PLAYER_ATTACK, enemy.defense, attrs["str"], attrs["luck"], rng)
            if used_skill is not None:
                player_damage = math.floor(player_damage * used_skill.get("damage_multiplier", 1.0))
        player_damage = max(0, player_damage)

        if hit:
            enemy.hp -= player_damage
            parts.append(
                _text(
                    locale,
                    f"Bạn gây {player_damage} sát thương{' chí mạng' if crit else ''}.",
                    f"You deal {player_damage}{' critical' if crit else ''} damage.",
                )
            )

        if used_skill is not None:
            levels_gained = grant_skill_exp(used_skill, rng.random_int(*SKILL_EXP_RANGE, label="skill_exp"))
            if levels_gained:
                parts.append(
                    _text(
                        locale,
                        f"{used_skill['name']} đạt cấp {used_skill['level']}!",
                        f"{used_skill.get('name_en') or used_skill['name']} reached level {used_skill['level']}!",
                    )
                )

    tick_cooldowns(state)
    if used_skill is not None:
        used_skill["current_cooldown"] = used_skill.get("cooldown", 1)

    name = enemy.display_name(locale)
    if enemy.hp <= 0:
        parts.append(_text(locale, f"{name} đã bị đánh bại!", f"{name} has been defeated!"))
        events.append({"type": "combat", "data": {"result": "victory", "enemy": enemy.name}})
        return RoundResult(action, hit, crit, dodged, player_damage, 0, "victory", " ".join(parts), events, levels_gained)

    dodged = rng.chance(dodge_chance(attrs), label="player_dodge")
    if dodged:
        parts.append(_text(locale, f"Bạn né được đòn của {name}.", f"You dodge {name}'s attack."))
    else:
        enemy_damage, _ = physical_damage(enemy.atk, player_defense(state, attrs, action == "defend"), 0, 0, rng)
        enemy_damage = max(0, enemy_damage)
        update_hp(state, -enemy_damage)
        parts.append(_text(locale, f"{name} gây {enemy_damage} sát thương.", f"{name} deals {enemy_damage} damage."))

    stats = state["stats"]
    if stats["hp"] <= 0:
        parts.append(_text(locale, "Bạn đã bị đánh bại...", "You have been defeated..."))
        events.append({"type": "combat", "data": {"result": "defeat", "enemy": enemy.name}})
        outcome = "defeat"
    else:
        parts.append(f"HP: {stats['hp']}/{stats['hp_max']}")
        events.append({"type": "combat", "data": {"result": "ongoing", "playerHP": stats["hp"], "enemyHP": enemy.hp}})
        outcome = "ongoing"
    return RoundResult(
        action, hit, crit, dodged, player_damage, enemy_damage, outcome, " ".join(parts), events, levels_gained
    )


def grant_combat_loot(state: dict, enemy: Enemy, rng: DeterministicRng) -> LootResult:
    loot = generate_loot(enemy.loot_table_id, rng)
    add_silver(state, loot.silver)
    add_spirit_stones(state, loot.spirit_stones)
    merge_items(state, loot.items)
    return loot


def auto_resolve_combat(state: dict, enemy: Enemy, rng: DeterministicRng, locale: str = "vi") -> CombatResult:
    name = enemy.display_name(locale)
    lines = [_text(locale, f"Chiến đấu bắt đầu với {name}!", f"Combat begins with {name}!"), ""]
    events: list[dict] = []
    rounds = 0

    while rounds < MAX_ROUNDS and state["stats"]["hp"] > 0 and enemy.hp > 0:
        rounds += 1
        use_qi = state["stats"]["qi"] >= QI_ATTACK_COST and rng.chance(AUTO_QI_ATTACK_CHANCE, label="auto_action")
        result = resolve_round(state, enemy, "qi_attack" if use_qi else "attack", rng, locale=locale)
        lines.append(_text(locale, f"Hiệp {rounds}: ", f"Round {rounds}: ") + result.narrative)
        events.extend(result.events)
        if result.outcome != "ongoing":
            break

    victory = enemy.hp <= 0
    loot = None
    if victory:
        loot = grant_combat_loot(state, enemy, rng)
        events.append({"type": "loot", "data": loot.as_event_data()})
        lines.append(_text(locale, f"\nThắng lợi! Bạn đã đánh bại {name}.", f"\nVictory! You have defeated {name}."))
    elif state["stats"]["hp"] <= 0:
        lines.append(_text(locale, "\nThất bại... Bạn bị đánh bại.", "\nDefeat... You have been defeated."))
    return CombatResult(victory=victory, rounds=rounds, narrative="\n".join(lines), events=events, loot=loot)
