from __future__ import annotations

import math

REALMS = ["PhàmNhân", "LuyệnKhí", "TrúcCơ", "KếtĐan", "NguyênAnh"]
MAX_STAGE = 9

# PhàmNhân is indexed by stage 0; every other realm by stage 1..9.
CULTIVATION_EXP_REQUIREMENTS: dict[str, list[int]] = {
    "PhàmNhân": [100],
    "LuyệnKhí": [300, 500, 800, 1200, 1800, 2500, 3500, 5000, 7000],
    "TrúcCơ": [8000, 10000, 12000, 15000, 18000, 22000, 27000, 33000, 40000],
    "KếtĐan": [45000, 50000, 60000, 70000, 85000, 100000, 120000, 140000, 170000],
    "NguyênAnh": [200000, 230000, 270000, 320000, 380000, 450000, 530000, 620000, 750000],
}

# Keyed by the realm being left.
REALM_BREAKTHROUGH_BONUSES = {
    "PhàmNhân": {"hp_max": 50, "qi_max": 100, "stamina_max": 2, "str": 2, "agi": 2, "int": 2, "perception": 1},
    "LuyệnKhí": {"hp_max": 100, "qi_max": 200, "stamina_max": 5, "str": 3, "agi": 3, "int": 3, "perception": 2},
    "TrúcCơ": {"hp_max": 150, "qi_max": 300, "stamina_max": 8, "str": 4, "agi": 4, "int": 4, "perception": 3},
    "KếtĐan": {"hp_max": 200, "qi_max": 400, "stamina_max": 12, "str": 5, "agi": 5, "int": 5, "perception": 4},
}

STAGE_BREAKTHROUGH_BONUSES = {
    "LuyệnKhí": {"hp_max": 30, "qi_max": 50, "str": 1, "agi": 1, "int": 1, "perception": 0},
    "TrúcCơ": {"hp_max": 50, "qi_max": 80, "str": 2, "agi": 2, "int": 2, "perception": 1},
    "KếtĐan": {"hp_max": 80, "qi_max": 120, "str": 3, "agi": 3, "int": 3, "perception": 2},
    "NguyênAnh": {"hp_max": 120, "qi_max": 200, "str": 4, "agi": 4, "int": 4, "perception": 2},
}

SPIRIT_ROOT_MULTIPLIERS = {
    "PhổThông": 1.0,
    "Khá": 1.2,
    "Hiếm": 1.5,
    "ThiênPhẩm": 2.0,
}

ELEMENT_GENERATES = {
    "Kim": "Thủy",
    "Thủy": "Mộc",
    "Mộc": "Hỏa",
    "Hỏa": "Thổ",
    "Thổ": "Kim",
}

ELEMENT_OVERCOMES = {
    "Kim": "Mộc",
    "Mộc": "Thổ",
    "Thổ": "Thủy",
    "Thủy": "Hỏa",
    "Hỏa": "Kim",
}

UNIVERSAL_TECHNIQUE_BONUS = 0.20
SUPPORT_TECHNIQUE_CAP = 0.5
TECHNIQUE_GRADE_SPEED_BONUS = {"Mortal": 10, "Earth": 20, "Heaven": 40}

BODY_REALMS = ["PhàmThể", "LuyệnCốt", "ĐồngCân", "KimCương", "TháiCổ"]
BODY_MAX_STAGE = 5
BODY_EXP_THRESHOLDS = {
    "PhàmThể": [50, 100, 150, 200, 250],
    "LuyệnCốt": [200, 400, 600, 800, 1000],
    "ĐồngCân": [500, 1000, 1500, 2000, 2500],
    "KimCương": [1000, 2000, 3000, 4000, 5000],
    "TháiCổ": [2500, 5000, 7500, 10000, 15000],
}
BODY_REALM_BONUSES = {
    "PhàmThể": {"hp": 10, "str": 1, "stamina": 5},
    "LuyệnCốt": {"hp": 25, "str": 2, "stamina": 10},
    "ĐồngCân": {"hp": 50, "str": 4, "stamina": 20},
    "KimCương": {"hp": 100, "str": 8, "stamina": 40},
    "TháiCổ": {"hp": 200, "str": 15, "stamina": 80},
}
BODY_STAGE_BONUSES = {"hp": 5, "str": 0.5, "stamina": 2}


def spirit_root_multiplier(grade: str | None) -> float:
    return SPIRIT_ROOT_MULTIPLIERS.get(grade or "", 1.0)


def element_compatibility(root_elements: list[str], technique_elements: list[str]) -> float:
    """Wu-Xing affinity between a spirit root and a technique, averaged per pair.

    A technique whose elements are all present in the root is a perfect match.
    Pairs with no generating or overcoming relation do not count toward the average.
    """
    if not technique_elements:
        return 0.0
    if all(element in root_elements for element in technique_elements):
        return 0.3

    total = 0.0
    matched = 0
    for tech in technique_elements:
        for root in root_elements:
            if tech == root:
                total += 0.3
            elif ELEMENT_GENERATES.get(root) == tech:
                total += 0.15
            elif ELEMENT_GENERATES.get(tech) == root:
                total += 0.10
            elif ELEMENT_OVERCOMES.get(tech) == root:
                total -= 0.20
            elif ELEMENT_OVERCOMES.get(root) == tech:
                total -= 0.10
            else:
                continue
            matched += 1
    return total / matched if matched else 0.0


def single_technique_bonus(technique: dict, root_elements: list[str]) -> float:
    base = (technique.get("cultivation_speed_bonus") or 0) / 100
    elements = technique.get("elements") or []
    if not elements:
        return base + UNIVERSAL_TECHNIQUE_BONUS
    return base + element_compatibility(root_elements, elements)


def technique_bonus(state: dict) -> float:
    techniques = state.get("techniques") or []
    if not techniques:
        return 1.0
    root_elements = state.get("spirit_root", {}).get("elements", [])
    main_bonus = 0.0
    support_bonus = 0.0
    for technique in techniques:
        bonus = single_technique_bonus(technique, root_elements)
        if technique.get("type") == "Main":
            main_bonus = max(main_bonus, bonus)
        else:
            support_bonus += bonus * 0.5
    return 1.0 + main_bonus + min(SUPPORT_TECHNIQUE_CAP, support_bonus)


def sect_bonus(state: dict) -> float:
    membership = state.get("sect_membership")
    if not membership:
        return 1.0
    return 1.0 + (membership.get("benefits", {}).get("cultivation_bonus") or 0) / 100


def calculate_cultivation_exp_gain(state: dict, base_exp: float) -> int:
    grade = state.get("spirit_root", {}).get("grade")
    return math.floor(
        base_exp * spirit_root_multiplier(grade) * technique_bonus(state) * sect_bonus(state)
    )


def required_exp(realm: str, stage: int) -> float:
    requirements = CULTIVATION_EXP_REQUIREMENTS.get(realm)
    if requirements is None:
        return math.inf
    index = stage if realm == REALMS[0] else stage - 1
    if index < 0 or index >= len(requirements):
        return math.inf
    if stage >= MAX_STAGE and realm == REALMS[-1]:
        return math.inf
    return requirements[index]


def can_breakthrough(state: dict) -> bool:
    progress = state["progress"]
    needed = required_exp(progress["realm"], progress["realm_stage"])
    if needed == math.inf:
        return False
    return progress["cultivation_exp"] >= needed


def _next_position(realm: str, stage: int) -> tuple[str, int, dict] | None:
    index = REALMS.index(realm)
    if realm == REALMS[0] or stage >= MAX_STAGE:
        if index + 1 >= len(REALMS):
            return None
        return REALMS[index + 1], 1, REALM_BREAKTHROUGH_BONUSES[realm]
    return realm, stage + 1, STAGE_BREAKTHROUGH_BONUSES[realm]


def perform_breakthrough(state: dict) -> bool:
    if not can_breakthrough(state):
        return False
    progress = state["progress"]
    position = _next_position(progress["realm"], progress["realm_stage"])
    if position is None:
        return False
    realm, stage, bonus = position

    progress["realm"] = realm
    progress["realm_stage"] = stage
    progress["cultivation_exp"] = 0

    stats = state["stats"]
    stats["hp_max"] += bonus.get("hp_max", 0)
    stats["qi_max"] += bonus.get("qi_max", 0)
    stats["stamina_max"] += bonus.get("stamina_max", 0)
    stats["hp"] = stats["hp_max"]
    stats["qi"] = stats["qi_max"]

    attrs = state["attrs"]
    for key in ("str", "agi", "int", "perception"):
        attrs[key] = attrs.get(key, 0) + bonus.get(key, 0)
    return True


def init_dual_cultivation(progress: dict) -> dict:
    progress["cultivation_path"] = "dual"
    progress["body_realm"] = progress.get("body_realm") or BODY_REALMS[0]
    progress["body_stage"] = progress.get("body_stage") or 0
    progress["body_exp"] = progress.get("body_exp") or 0
    if progress.get("exp_split") is None:
        progress["exp_split"] = 50
    return progress


def ensure_body_progress(progress: dict) -> None:
    progress["body_realm"] = progress.get("body_realm") or BODY_REALMS[0]
    progress["body_stage"] = progress.get("body_stage") or 0
    progress["body_exp"] = progress.get("body_exp") or 0


def _next_body_realm(realm: str) -> str | None:
    index = BODY_REALMS.index(realm)
    if index + 1 >= len(BODY_REALMS):
        return None
    return BODY_REALMS[index + 1]


def body_exp_to_next(progress: dict) -> float:
    realm = progress.get("body_realm") or BODY_REALMS[0]
    stage = progress.get("body_stage") or 0
    if stage >= BODY_MAX_STAGE:
        next_realm = _next_body_realm(realm)
        if next_realm is None:
            return math.inf
        return BODY_EXP_THRESHOLDS[next_realm][0]
    return BODY_EXP_THRESHOLDS[realm][stage]


def split_experience(total_exp: int, exp_split: float) -> tuple[int, int]:
    qi_share = max(0, min(100, exp_split)) / 100
    qi_exp = math.floor(total_exp * qi_share)
    return qi_exp, total_exp - qi_exp


def set_exp_split(progress: dict, split: float) -> dict:
    progress["exp_split"] = max(0, min(100, split))
    return progress


def _grant_body_bonus(state: dict, bonus: dict) -> None:
    stats = state["stats"]
    stats["hp_max"] += bonus["hp"]
    stats["hp"] = min(stats["hp_max"], stats["hp"] + bonus["hp"])
    stats["stamina_max"] += bonus["stamina"]
    progress = state["progress"]
    carry = (progress.get("body_str_carry") or 0) + bonus["str"]
    whole = math.floor(carry)
    state["attrs"]["str"] = state["attrs"].get("str", 0) + whole
    progress["body_str_carry"] = carry - whole


def can_body_breakthrough(state: dict) -> bool:
    progress = state["progress"]
    if not progress.get("body_realm"):
        return False
    needed = body_exp_to_next(progress)
    if needed == math.inf:
        return False
    return (progress.get("body_exp") or 0) >= needed


def perform_body_breakthrough(state: dict) -> bool:
    if not can_body_breakthrough(state):
        return False
    progress = state["progress"]
    if progress["body_stage"] >= BODY_MAX_STAGE:
        next_realm = _next_body_realm(progress["body_realm"])
        if next_realm is None:
            return False
        progress["body_realm"] = next_realm
        progress["body_stage"] = 0
        _grant_body_bonus(state, BODY_REALM_BONUSES[next_realm])
    else:
        progress["body_stage"] += 1
        _grant_body_bonus(state, BODY_STAGE_BONUSES)
    progress["body_exp"] = 0
    return True


def add_body_experience(state: dict, exp_gained: int) -> dict:
    """Adds body exp and resolves the stage or realm it unlocks; exp resets on advance."""
    progress = state["progress"]
    ensure_body_progress(progress)
    progress["body_exp"] += exp_gained
    stage_ups = 0
    realm_ups = 0
    while True:
        needed = body_exp_to_next(progress)
        if needed == math.inf or progress["body_exp"] < needed:
            break
        realm_before = progress["body_realm"]
        perform_body_breakthrough(state)
        if progress["body_realm"] != realm_before:
            realm_ups += 1
        else:
            stage_ups += 1
    return {"stage_ups": stage_ups, "realm_ups": realm_ups}


def apply_dual_cultivation_exp(state: dict, total_exp: int) -> dict:
    progress = state["progress"]
    dual = progress.get("cultivation_path") == "dual"
    split = progress.get("exp_split", 50) if dual else 100
    if split is None:
        split = 50
    qi_exp, body_exp = split_experience(total_exp, split)
    progress["cultivation_exp"] += qi_exp
    body_result = {"stage_ups": 0, "realm_ups": 0}
    if dual and body_exp > 0:
        body_result = add_body_experience(state, body_exp)
    return {"qi_exp": qi_exp, "body_exp": body_exp if dual else 0, **body_result}
