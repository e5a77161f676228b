import logging
import os
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from db import check_db_connection
from llm.client import OllamaClient
from llm.schemas import Choice
from repository import RunRecord, RunRepository, SqlRunRepository
from rules.activities import (
    ActivityError,
    activity_cost,
    available_activities,
    duration_segments,
    expected_rewards,
    get_activity,
    perform_activity,
)
from rules.combat import auto_resolve_combat, generate_enemy
from rules.core import DeterministicRng
from rules.cultivation import set_exp_split
from rules.dungeons import (
    DungeonError,
    advance_floor,
    challenge_boss,
    collect_chest,
    enter_dungeon,
    exit_dungeon,
    explore_floor,
    list_dungeons,
)
from rules.enhancement import EnhancementError, attempt_enhancement
from rules.inventory import (
    EQUIPMENT_SLOTS,
    SKILL_TYPES,
    TECHNIQUE_TYPES,
    equip_item,
    find_item,
    remove_item,
    unequip_item,
    use_consumable_item,
)
from rules.migrations import migrate_state
from rules.settings import normalize_locale
from rules.skills import AbilityError, add_skill, add_technique, manage_ability
from rules.stats import advance_time, lifespan_urgency
from rules.turn import RunNotFoundError, TurnError, TurnGenerator, execute_turn, run_lock
from rules.validation import DeltaValidationError

logger = logging.getLogger(__name__)

COMBAT_TIME_SEGMENTS = 1

app = FastAPI(
    title="xianxia-engine API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def get_repository() -> RunRepository:
    return SqlRunRepository()


def get_generator() -> TurnGenerator:
    return OllamaClient()


def _dev_mode() -> bool:
    return os.getenv("DEV_MODE", "").lower() == "true"


@app.get("/api/hello")
def hello() -> dict:
    return {"message": "Hello from xianxia-engine"}


@app.get("/health")
def health() -> dict:
    try:
        check_db_connection()
    except Exception as exc:
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok"}


class RunCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    age: int | None = Field(default=None, ge=10, le=100)
    locale: str | None = None
    world_seed: str | None = Field(default=None, max_length=64)


class TurnRequest(BaseModel):
    run_id: int
    choice_id: str | None = None
    selected_choice: Choice | None = None
    locale: str | None = None


class EnhanceRequest(BaseModel):
    item_id: str


class CombatRequest(BaseModel):
    difficulty: Literal["easy", "medium", "hard"] = "medium"


class EquipRequest(BaseModel):
    item_id: str | None = None
    slot: str | None = None
    action: Literal["equip", "unequip"] = "equip"


class ExpSplitRequest(BaseModel):
    exp_split: float = Field(ge=0, le=100)


class ActivityRequest(BaseModel):
    activity_id: str
    duration: str
    skill_id: str | None = None


class AbilityRequest(BaseModel):
    ability_type: Literal["technique", "skill"]
    action: Literal["learn", "forget", "swap", "discard"]
    active_id: str | None = None
    queue_id: str | None = None


class DiscardRequest(BaseModel):
    quantity: int = Field(default=1, ge=1)


class DungeonRequest(BaseModel):
    action: Literal["enter", "explore", "advance", "chest", "boss", "exit"]
    dungeon_id: str | None = None


def _run_payload(record: RunRecord) -> dict:
    return {
        "id": record.id,
        "world_seed": record.world_seed,
        "locale": record.locale,
        "state": record.state,
    }


def _load_state(repository: RunRepository, run_id: int) -> RunRecord:
    record = repository.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Run not found")
    if migrate_state(record.state):
        logger.info("Migrated run %s to state version %s", run_id, record.state["state_version"])
    return record


def _save_state(repository: RunRepository, record: RunRecord) -> str:
    record.state["lifespan_urgency"] = lifespan_urgency(record.state)
    save = repository.update(record.id, record.state)
    if not save.success:
        logger.warning("Run %s not saved: %s", record.id, save.error)
        return "failed"
    return "saved"


def _action_rng(record: RunRecord, action: str, *parts: Any) -> DeterministicRng:
    state = record.state
    clock = f"{state.get('time_year')}-{state.get('time_month')}-{state.get('time_day')}-{state.get('time_segment')}"
    suffix = "-".join(str(part) for part in parts)
    return DeterministicRng(f"{record.world_seed}-{action}-{state.get('turn_count', 0)}-{clock}-{suffix}")


@app.post("/runs")
def create_run(payload: RunCreate, repository: RunRepository = Depends(get_repository)) -> dict:
    record = repository.create(
        name=payload.name.strip(),
        age=payload.age,
        locale=payload.locale,
        world_seed=payload.world_seed,
    )
    return _run_payload(record)


@app.get("/runs/{run_id}")
def get_run(run_id: int, repository: RunRepository = Depends(get_repository)) -> dict:
    record = _load_state(repository, run_id)
    return _run_payload(record)


@app.post("/turn")
def take_turn(
    payload: TurnRequest,
    repository: RunRepository = Depends(get_repository),
    generator: TurnGenerator = Depends(get_generator),
) -> dict:
    try:
        result = execute_turn(
            payload.run_id,
            payload.choice_id,
            selected_choice=payload.selected_choice,
            locale=payload.locale,
            repository=repository,
            generator=generator,
        )
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response = {
        "narrative": result.narrative,
        "choices": result.choices,
        "state": result.state,
        "events": result.events,
        "turn_no": result.turn_no,
        "scene_type": result.scene_type,
        "save_status": result.save_status,
    }
    if _dev_mode():
        response["used_fallback"] = result.used_fallback
        response["applied_deltas"] = result.applied_deltas
        response["proposal"] = result.proposal
    return response


@app.post("/runs/{run_id}/enhance")
def enhance_item(
    run_id: int,
    payload: EnhanceRequest,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        item = find_item(record.state, payload.item_id) or {}
        level = item.get("enhancement_level") or 0
        attempts = item.get("enhance_attempts") or 0
        rng = _action_rng(record, "enhance", payload.item_id, level, attempts)
        try:
            result = attempt_enhancement(record.state, payload.item_id, rng)
        except EnhancementError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        save_status = _save_state(repository, record)
    return {
        "success": result.success,
        "previous_level": result.previous_level,
        "new_level": result.new_level,
        "silver_spent": result.silver_spent,
        "materials_spent": result.materials_spent,
        "stat_increase": result.stat_increase,
        "state": record.state,
        "save_status": save_status,
    }


@app.post("/runs/{run_id}/combat")
def fight(
    run_id: int,
    payload: CombatRequest | None = None,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    difficulty = payload.difficulty if payload else "medium"
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        if record.state["stats"]["hp"] <= 0:
            raise HTTPException(status_code=400, detail="Too injured to fight")
        rng = _action_rng(record, "combat", difficulty)
        enemy = generate_enemy(record.state, difficulty, rng)
        enemy_before = enemy.as_dict()
        result = auto_resolve_combat(record.state, enemy, rng, locale=record.locale)
        advance_time(record.state, COMBAT_TIME_SEGMENTS)
        save_status = _save_state(repository, record)
    return {
        "enemy": enemy_before,
        "victory": result.victory,
        "rounds": result.rounds,
        "narrative": result.narrative,
        "events": result.events,
        "loot": result.loot.as_event_data() if result.loot else None,
        "state": record.state,
        "save_status": save_status,
    }


def _learn_from_item(state: dict, item: dict) -> str:
    try:
        if item.get("type") in TECHNIQUE_TYPES:
            placement = add_technique(state, item)
            if placement is None:
                raise HTTPException(status_code=400, detail="You already know this technique")
        else:
            placement = add_skill(state, item)
            if placement is None:
                raise HTTPException(status_code=400, detail="You already know this skill")
    except DeltaValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    remove_item(state, item["id"], 1, item.get("type"))
    return placement


@app.post("/runs/{run_id}/items/{item_id}/use")
def use_item(run_id: int, item_id: str, repository: RunRepository = Depends(get_repository)) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        item = find_item(record.state, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        placement = None
        if item.get("type") in TECHNIQUE_TYPES or item.get("type") in SKILL_TYPES:
            placement = _learn_from_item(record.state, item)
        elif not use_consumable_item(record.state, item_id):
            raise HTTPException(status_code=400, detail="This item cannot be used")
        save_status = _save_state(repository, record)
    return {"item_id": item_id, "placement": placement, "state": record.state, "save_status": save_status}


@app.post("/runs/{run_id}/items/{item_id}/discard")
def discard_item(
    run_id: int,
    item_id: str,
    payload: DiscardRequest | None = None,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    quantity = payload.quantity if payload else 1
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        item = find_item(record.state, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        held = item.get("quantity", 1)
        if quantity > held:
            raise HTTPException(status_code=400, detail=f"Only {held} held")
        remove_item(record.state, item_id, quantity, item.get("type"))
        logger.info("Run %s discarded %d x %s", run_id, quantity, item_id)
        save_status = _save_state(repository, record)
    return {
        "item_id": item_id,
        "discarded": quantity,
        "remaining": held - quantity,
        "state": record.state,
        "save_status": save_status,
    }


@app.post("/runs/{run_id}/abilities")
def update_abilities(
    run_id: int,
    payload: AbilityRequest,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        try:
            manage_ability(
                record.state,
                payload.ability_type,
                payload.action,
                active_id=payload.active_id,
                queue_id=payload.queue_id,
            )
        except AbilityError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        save_status = _save_state(repository, record)
    return {"state": record.state, "save_status": save_status}


@app.post("/runs/{run_id}/equip")
def equip(run_id: int, payload: EquipRequest, repository: RunRepository = Depends(get_repository)) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        if payload.action == "unequip":
            if payload.slot not in EQUIPMENT_SLOTS:
                raise HTTPException(status_code=400, detail="Invalid equipment slot")
            slot = payload.slot
            if unequip_item(record.state, slot) is None:
                raise HTTPException(status_code=400, detail="Nothing equipped in that slot")
        else:
            if not payload.item_id:
                raise HTTPException(status_code=400, detail="item_id is required")
            if find_item(record.state, payload.item_id) is None:
                raise HTTPException(status_code=404, detail="Item not found")
            slot = equip_item(record.state, payload.item_id)
            if slot is None:
                raise HTTPException(status_code=400, detail="Item cannot be equipped")
        save_status = _save_state(repository, record)
    return {
        "slot": slot,
        "equipped_items": record.state["equipped_items"],
        "state": record.state,
        "save_status": save_status,
    }


@app.post("/runs/{run_id}/exp_split")
def update_exp_split(
    run_id: int,
    payload: ExpSplitRequest,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        progress = record.state["progress"]
        if progress.get("cultivation_path") != "dual":
            raise HTTPException(status_code=400, detail="Experience split requires dual cultivation")
        set_exp_split(progress, payload.exp_split)
        save_status = _save_state(repository, record)
    return {"exp_split": progress["exp_split"], "state": record.state, "save_status": save_status}


@app.get("/runs/{run_id}/activities")
def list_activities(
    run_id: int,
    locale: str | None = None,
    repository: RunRepository = Depends(get_repository),
) -> list[dict]:
    record = _load_state(repository, run_id)
    locale = normalize_locale(locale, fallback=record.locale)
    listing = available_activities(record.state, locale)
    for entry in listing:
        activity = get_activity(entry["id"])
        segments = duration_segments(activity, activity.durations[0])
        entry["cost"] = activity_cost(activity.id, segments)
        entry["expected_rewards"] = expected_rewards(activity.id, segments, record.state)
    return listing


@app.post("/runs/{run_id}/activities")
def do_activity(
    run_id: int,
    payload: ActivityRequest,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        rng = _action_rng(record, "activity", payload.activity_id, payload.duration)
        try:
            result = perform_activity(
                record.state,
                payload.activity_id,
                payload.duration,
                rng,
                locale=record.locale,
                skill_id=payload.skill_id,
            )
        except ActivityError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        save_status = _save_state(repository, record)
    return {
        "activity": result.activity,
        "segments": result.segments,
        "qi_exp": result.qi_exp,
        "body_exp": result.body_exp,
        "skill_exp": result.skill_exp,
        "stamina_recovered": result.stamina_recovered,
        "hp_recovered": result.hp_recovered,
        "insights": result.insights,
        "events": result.events,
        "state": record.state,
        "save_status": save_status,
    }


@app.get("/runs/{run_id}/dungeons")
def get_dungeons(
    run_id: int,
    locale: str | None = None,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    record = _load_state(repository, run_id)
    locale = normalize_locale(locale, fallback=record.locale)
    return {"dungeons": list_dungeons(record.state, locale), "progress": record.state["dungeon"]}


@app.post("/runs/{run_id}/dungeon")
def dungeon_action(
    run_id: int,
    payload: DungeonRequest,
    repository: RunRepository = Depends(get_repository),
) -> dict:
    with run_lock(run_id):
        record = _load_state(repository, run_id)
        progress = record.state["dungeon"]
        rng = _action_rng(
            record,
            "dungeon",
            payload.action,
            progress.get("dungeon_id"),
            progress.get("current_floor"),
            progress.get("turns_spent"),
            len(progress.get("collected_chests") or []),
        )
        try:
            if payload.action == "enter":
                if not payload.dungeon_id:
                    raise HTTPException(status_code=400, detail="dungeon_id is required")
                outcome = enter_dungeon(record.state, payload.dungeon_id, record.locale)
            elif payload.action == "explore":
                outcome = explore_floor(record.state, rng, record.locale)
            elif payload.action == "advance":
                outcome = advance_floor(record.state, record.locale)
            elif payload.action == "chest":
                outcome = collect_chest(record.state, rng, record.locale)
            elif payload.action == "boss":
                outcome = challenge_boss(record.state, rng, record.locale)
            else:
                outcome = exit_dungeon(record.state, rng, record.locale)
        except DungeonError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        save_status = _save_state(repository, record)
    return {
        "action": outcome.action,
        "narrative": outcome.narrative,
        "events": outcome.events,
        "rewards": outcome.rewards,
        "completed": outcome.completed,
        "dungeon": record.state["dungeon"],
        "state": record.state,
        "save_status": save_status,
    }
