from __future__ import annotations

import logging
import math
from typing import Annotated, Any, Callable, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, JsonValue, Tag, TypeAdapter

from llm.schemas import DeltaOperation, ProposedDelta
from rules import sect as sect_rules
from rules.core import DeterministicRng
from rules.cultivation import calculate_cultivation_exp_gain, ensure_body_progress
from rules.inventory import add_item, merge_items
from rules.loot import generate_loot
from rules.skills import add_skill, add_technique, gain_skill_exp
from rules.stats import (
    add_silver,
    add_spirit_stones,
    clamp_stat,
    subtract_silver,
    subtract_spirit_stones,
    update_hp,
    update_qi,
    update_stamina,
)
from rules.validation import as_mapping, as_number, as_text, clamp

logger = logging.getLogger(__name__)

MAX_STAT_CHANGE = 100
MAX_HP_MAX_GAIN = 50
MAX_QI_MAX_GAIN = 100
MAX_ATTR_GAIN = 5
MAX_KARMA_CHANGE = 20
MAX_EXP_GAIN = 100
MAX_BODY_EXP_GAIN = 100
MAX_SILVER_GAIN = 1000
MAX_SPIRIT_STONE_GAIN = 100
DUAL_QI_SHARE = 0.7
DUAL_BODY_SHARE = 0.3

# Item types that belong in techniques/skills rather than inventory.
NON_INVENTORY_TYPES = {"main", "support", "attack", "defense", "movement"}


class _TypedDelta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target: str | None = None
    operation: DeltaOperation
    value: JsonValue = None


class StatDelta(_TypedDelta):
    namespace: Literal["stats"]


class AttrDelta(_TypedDelta):
    namespace: Literal["attrs"]


class ProgressDelta(_TypedDelta):
    namespace: Literal["progress"]


class InventoryDelta(_TypedDelta):
    namespace: Literal["inventory"]


class KarmaDelta(_TypedDelta):
    namespace: Literal["karma"]


class TechniqueDelta(_TypedDelta):
    namespace: Literal["techniques"]


class SkillDelta(_TypedDelta):
    namespace: Literal["skills"]


class SectDelta(_TypedDelta):
    namespace: Literal["sect"]


class LocationDelta(_TypedDelta):
    namespace: Literal["location"]


class UnknownDelta(_TypedDelta):
    namespace: str


KNOWN_NAMESPACES = {
    "stats",
    "attrs",
    "progress",
    "inventory",
    "karma",
    "techniques",
    "skills",
    "sect",
    "location",
}


def _namespace_tag(raw: Any) -> str:
    namespace = raw.get("namespace") if isinstance(raw, dict) else getattr(raw, "namespace", None)
    return namespace if namespace in KNOWN_NAMESPACES else "unknown"


TypedDelta = Annotated[
    Union[
        Annotated[StatDelta, Tag("stats")],
        Annotated[AttrDelta, Tag("attrs")],
        Annotated[ProgressDelta, Tag("progress")],
        Annotated[InventoryDelta, Tag("inventory")],
        Annotated[KarmaDelta, Tag("karma")],
        Annotated[TechniqueDelta, Tag("techniques")],
        Annotated[SkillDelta, Tag("skills")],
        Annotated[SectDelta, Tag("sect")],
        Annotated[LocationDelta, Tag("location")],
        Annotated[UnknownDelta, Tag("unknown")],
    ],
    Discriminator(_namespace_tag),
]

_TYPED_DELTA = TypeAdapter(TypedDelta)


def parse_delta(delta: ProposedDelta | dict) -> TypedDelta:
    proposal = delta if isinstance(delta, ProposedDelta) else ProposedDelta.model_validate(delta)
    namespace, _, target = proposal.field.strip().partition(".")
    return _TYPED_DELTA.validate_python(
        {
            "namespace": namespace,
            "target": target or None,
            "operation": proposal.operation,
            "value": proposal.value,
        }
    )


def _signed(operation: str, amount: float) -> float | None:
    if operation == "add":
        return amount
    if operation == "subtract":
        return -amount
    return None


def _apply_stats(state: dict, delta: StatDelta, rng: DeterministicRng, events: list[dict]) -> None:
    amount = clamp_stat(as_number(delta.value, field="stats"), -MAX_STAT_CHANGE, MAX_STAT_CHANGE)
    stats = state["stats"]
    if delta.target in ("hp", "qi", "stamina"):
        change = _signed(delta.operation, amount)
        if change is None:
            return
        {"hp": update_hp, "qi": update_qi, "stamina": update_stamina}[delta.target](state, change)
    elif delta.target == "hp_max" and delta.operation == "add":
        stats["hp_max"] += clamp(amount, 0, MAX_HP_MAX_GAIN)
    elif delta.target == "qi_max" and delta.operation == "add":
        stats["qi_max"] += clamp(amount, 0, MAX_QI_MAX_GAIN)


def _apply_attrs(state: dict, delta: AttrDelta, rng: DeterministicRng, events: list[dict]) -> None:
    attrs = state["attrs"]
    if delta.operation != "add" or delta.target not in attrs:
        return
    attrs[delta.target] += clamp_stat(as_number(delta.value, field="attrs"), 0, MAX_ATTR_GAIN)


def _apply_progress(state: dict, delta: ProgressDelta, rng: DeterministicRng, events: list[dict]) -> None:
    if delta.operation != "add":
        return
    progress = state["progress"]
    if delta.target == "cultivation_exp":
        requested = clamp(as_number(delta.value, field="progress.cultivation_exp"), 0, MAX_EXP_GAIN)
        gained = calculate_cultivation_exp_gain(state, requested)
        if progress.get("cultivation_path") == "dual":
            ensure_body_progress(progress)
            progress["cultivation_exp"] += math.floor(gained * DUAL_QI_SHARE)
            progress["body_exp"] += math.floor(gained * DUAL_BODY_SHARE)
        else:
            progress["cultivation_exp"] += gained
    elif delta.target == "body_exp":
        requested = clamp(as_number(delta.value, field="progress.body_exp"), 0, MAX_BODY_EXP_GAIN)
        ensure_body_progress(progress)
        progress["body_exp"] += math.floor(requested)


def _apply_inventory(state: dict, delta: InventoryDelta, rng: DeterministicRng, events: list[dict]) -> None:
    target, operation = delta.target, delta.operation
    if target == "silver":
        amount = clamp(as_number(delta.value, field="inventory.silver"), 0, math.inf)
        if operation == "add":
            add_silver(state, min(amount, MAX_SILVER_GAIN))
        elif operation == "subtract":
            subtract_silver(state, amount)
    elif target == "spirit_stones":
        amount = clamp(as_number(delta.value, field="inventory.spirit_stones"), 0, math.inf)
        if operation == "add":
            add_spirit_stones(state, min(amount, MAX_SPIRIT_STONE_GAIN))
        elif operation == "subtract":
            subtract_spirit_stones(state, amount)
    elif target == "add_item":
        item = dict(as_mapping(delta.value, field="inventory.add_item"))
        as_text(item.get("id"), field="inventory.add_item.id")
        if str(item.get("type", "")).strip().lower() in NON_INVENTORY_TYPES:
            logger.warning(
                "Ignoring %s item %s in inventory.add_item; use techniques/skills instead",
                item.get("type"),
                item.get("id"),
            )
            return
        quantity = item.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            item["quantity"] = 1
        add_item(state, item)
        events.append({"type": "loot", "data": {"item": item}})
    elif target == "loot":
        table_id = as_text(delta.value, field="inventory.loot")
        loot = generate_loot(table_id, rng)
        add_silver(state, loot.silver)
        add_spirit_stones(state, loot.spirit_stones)
        merge_items(state, loot.items)
        events.append({"type": "loot", "data": loot.as_event_data()})


def _apply_karma(state: dict, delta: KarmaDelta, rng: DeterministicRng, events: list[dict]) -> None:
    amount = clamp_stat(as_number(delta.value, field="karma"), -MAX_KARMA_CHANGE, MAX_KARMA_CHANGE)
    change = _signed(delta.operation, amount)
    if change is not None:
        state["karma"] = state.get("karma", 0) + change


def _apply_techniques(state: dict, delta: TechniqueDelta, rng: DeterministicRng, events: list[dict]) -> None:
    if delta.target == "add" and delta.operation == "add":
        add_technique(state, delta.value)


def _apply_skills(state: dict, delta: SkillDelta, rng: DeterministicRng, events: list[dict]) -> None:
    if delta.operation != "add":
        return
    if delta.target == "add":
        add_skill(state, delta.value)
    elif delta.target == "gain_exp":
        gain_skill_exp(state, delta.value)


def _apply_sect(state: dict, delta: SectDelta, rng: DeterministicRng, events: list[dict]) -> None:
    target, operation = delta.target, delta.operation
    if operation == "set":
        if target == "join":
            sect_rules.join_sect(state, delta.value, events)
        elif target == "leave":
            sect_rules.leave_sect(state, delta.value, events)
        elif target == "promote":
            sect_rules.promote(state, delta.value, events)
    elif operation == "add":
        if target == "contribution":
            sect_rules.add_contribution(state, delta.value)
        elif target == "reputation":
            sect_rules.adjust_reputation(state, delta.value)
        elif target == "mission":
            sect_rules.complete_mission(state, delta.value, events)


def _apply_location(state: dict, delta: LocationDelta, rng: DeterministicRng, events: list[dict]) -> None:
    if delta.operation != "set" or delta.target not in ("place", "region"):
        return
    state.setdefault("location", {})[delta.target] = as_text(delta.value, field=f"location.{delta.target}")


def _ignore(state: dict, delta: UnknownDelta, rng: DeterministicRng, events: list[dict]) -> None:
    logger.debug("Ignoring delta for unknown namespace %s", delta.namespace)


HANDLERS: dict[str, Callable[[dict, Any, DeterministicRng, list[dict]], None]] = {
    "stats": _apply_stats,
    "attrs": _apply_attrs,
    "progress": _apply_progress,
    "inventory": _apply_inventory,
    "karma": _apply_karma,
    "techniques": _apply_techniques,
    "skills": _apply_skills,
    "sect": _apply_sect,
    "location": _apply_location,
}


def apply_delta(state: dict, delta: ProposedDelta | dict, rng: DeterministicRng, events: list[dict]) -> None:
    typed = parse_delta(delta)
    HANDLERS.get(typed.namespace, _ignore)(state, typed, rng, events)


def apply_validated_deltas(
    state: dict,
    deltas: Iterable[ProposedDelta | dict],
    rng: DeterministicRng,
    events: list[dict],
) -> int:
    """Apply each proposed delta in isolation; a bad delta is logged and skipped.

    Returns the number of deltas that applied without raising.
    """
    applied = 0
    for delta in deltas:
        try:
            apply_delta(state, delta, rng, events)
        except Exception as exc:
            logger.warning("Skipping delta %r: %s", delta, exc)
            continue
        applied += 1
    return applied
