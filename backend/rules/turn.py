from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Protocol

from llm.client import OllamaClient
from llm.schemas import Choice, TurnProposal
from repository import RunRepository, SqlRunRepository
from rules.core import rng_for_turn
from rules.cultivation import (
    can_body_breakthrough,
    can_breakthrough,
    perform_body_breakthrough,
    perform_breakthrough,
)
from rules.deltas import apply_validated_deltas
from rules.migrations import migrate_state
from rules.scenes import choose_scene
from rules.settings import RECENT_NARRATIVE_COUNT, SUMMARY_INTERVAL, SUMMARY_MAX_LENGTH, normalize_locale
from rules.stats import apply_cost, lifespan_urgency, regenerate_stamina

logger = logging.getLogger(__name__)

SUMMARY_SNIPPET_LENGTH = 200
SUMMARY_TAIL_LENGTH = 800


class TurnError(ValueError):
    pass


class RunNotFoundError(TurnError):
    pass


class TurnGenerator(Protocol):
    def generate_turn(
        self,
        state: dict,
        recent_narratives: list[str],
        scene_context: str,
        choice_id: str | None,
        locale: str,
        choice_text: str | None = None,
    ) -> TurnProposal: ...


@dataclass
class TurnResult:
    narrative: str
    choices: list[dict]
    state: dict
    events: list[dict]
    turn_no: int
    scene_type: str | None = None
    save_status: str | None = None
    used_fallback: bool = False
    applied_deltas: int = 0
    proposal: dict = field(default_factory=dict)


@dataclass
class _RunLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


_locks_guard = threading.Lock()
_run_locks: dict[int, _RunLock] = {}


@contextmanager
def run_lock(run_id: int) -> Iterator[None]:
    """Serializes work on one run; the entry is dropped once nobody holds or waits on it."""
    with _locks_guard:
        entry = _run_locks.setdefault(run_id, _RunLock())
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _run_locks[run_id]


def fallback_proposal(locale: str) -> TurnProposal:
    if locale == "vi":
        narrative = (
            "Bạn đang ở trong một khu rừng yên tĩnh. Không có gì đặc biệt xảy ra. "
            "Có lẽ bạn nên nghỉ ngơi hoặc tiếp tục hành trình."
        )
        rest, go_on = "Nghỉ ngơi", "Tiếp tục"
    else:
        narrative = (
            "You are in a quiet forest. Nothing special happens. "
            "Perhaps you should rest or continue your journey."
        )
        rest, go_on = "Rest", "Continue"
    return TurnProposal.model_validate(
        {
            "locale": locale,
            "narrative": narrative,
            "choices": [
                {"id": "rest", "text": rest, "cost": {"time_segments": 1}},
                {"id": "continue", "text": go_on},
            ],
            "proposed_deltas": [{"field": "stats.stamina", "operation": "add", "value": 1}],
            "events": [],
        }
    )


def update_story_summary(state: dict, narrative: str, locale: str) -> None:
    summary = f"{state.get('story_summary') or ''} {narrative[:SUMMARY_SNIPPET_LENGTH]}".strip()
    if len(summary) > SUMMARY_MAX_LENGTH:
        progress = state["progress"]
        stage_word = "tầng" if locale == "vi" else "stage"
        prefix = f"{progress['realm']} {stage_word} {progress['realm_stage']}. "
        summary = prefix + summary[-SUMMARY_TAIL_LENGTH:]
    state["story_summary"] = summary


def _scene_context(
    state: dict,
    choice_id: str | None,
    choice_text: str | None,
    recent_scene_types: list[str],
    locale: str,
    rng,
) -> tuple[str, str | None]:
    if choice_id and state.get("turn_count", 0) > 0:
        label = choice_text or choice_id
        if locale == "vi":
            return f"Tiếp tục từ lựa chọn: {label}", None
        return f"Continuing from choice: {label}", None

    template = choose_scene(state, recent_scene_types, rng)
    if template is None:
        if locale == "vi":
            return "Nhân vật đang ở trong một khu vực yên tĩnh.", None
        return "The character is in a quiet area.", None
    return template.prompt_context(state, locale), template.id


def _choice_payload(selected_choice: Choice | dict | None) -> dict | None:
    if selected_choice is None:
        return None
    if isinstance(selected_choice, Choice):
        return selected_choice.model_dump(exclude_none=True)
    return dict(selected_choice)


def execute_turn(
    run_id: int,
    choice_id: str | None = None,
    *,
    choice_text: str | None = None,
    selected_choice: Choice | dict | None = None,
    locale: str | None = None,
    repository: RunRepository | None = None,
    generator: TurnGenerator | None = None,
) -> TurnResult:
    repository = repository or SqlRunRepository()
    with run_lock(run_id):
        record = repository.get(run_id)
        if record is None:
            raise RunNotFoundError("Run not found.")
        recent_logs = repository.recent_turn_logs(run_id, RECENT_NARRATIVE_COUNT)
        result = execute_turn_for_state(
            record.state,
            world_seed=record.world_seed,
            choice_id=choice_id,
            choice_text=choice_text,
            selected_choice=selected_choice,
            locale=normalize_locale(locale, fallback=record.locale),
            recent_logs=recent_logs,
            generator=generator,
        )

        save = repository.update(run_id, result.state)
        if not save.success:
            logger.warning("Turn %s for run %s computed but not saved: %s", result.turn_no, run_id, save.error)
            result.save_status = "failed"
            result.events.append(
                {
                    "type": "status_effect",
                    "data": {"type": "save_warning", "message": save.error or "Failed to save game state."},
                }
            )
            return result

        result.save_status = "saved"
        try:
            repository.add_turn_log(
                run_id,
                turn_no=result.turn_no,
                choice_id=choice_id,
                narrative=result.narrative,
                scene_type=result.scene_type,
                events=result.events,
                ai_json=result.proposal,
            )
        except Exception as exc:
            logger.warning("Turn log for run %s turn %s not written: %s", run_id, result.turn_no, exc)
        return result


def execute_turn_for_state(
    state: dict,
    *,
    world_seed: str,
    choice_id: str | None = None,
    choice_text: str | None = None,
    selected_choice: Choice | dict | None = None,
    locale: str = "vi",
    recent_logs: list[dict] | None = None,
    generator: TurnGenerator | None = None,
    now: datetime | None = None,
) -> TurnResult:
    """Resolves one turn against a copy of ``state`` and returns the new state.

    Nothing here touches storage; the generator is the only external call and
    its failures fall back to a fixed proposal.
    """
    state = copy.deepcopy(state)
    now = now or datetime.now(timezone.utc)
    migrate_state(state)

    turn_no = state.get("turn_count", 0) + 1
    rng = rng_for_turn(world_seed, turn_no)
    recent_logs = recent_logs or []
    recent_narratives = [log["narrative"] for log in recent_logs if log.get("narrative")]
    recent_scene_types = [log["scene_type"] for log in recent_logs if log.get("scene_type")]

    regenerate_stamina(state, now)
    choice = _choice_payload(selected_choice)
    if choice:
        choice_text = choice_text or choice.get("text")
        cost = choice.get("cost")
        if cost:
            apply_cost(state, cost)
            if cost.get("stamina"):
                state["last_stamina_regen"] = now.isoformat()

    scene_context, scene_type = _scene_context(state, choice_id, choice_text, recent_scene_types, locale, rng)

    generator = generator or OllamaClient()
    used_fallback = False
    try:
        proposal = generator.generate_turn(
            state,
            recent_narratives,
            scene_context,
            choice_id,
            locale,
            choice_text,
        )
    except Exception as exc:
        logger.warning("Narrative generation failed, using fallback: %s", exc)
        proposal = fallback_proposal(locale)
        used_fallback = True

    events = [event.model_dump() for event in proposal.events]
    applied = apply_validated_deltas(state, proposal.proposed_deltas, rng, events)
    logger.info("Turn %s applied %d of %d proposed deltas", turn_no, applied, len(proposal.proposed_deltas))

    if can_breakthrough(state) and perform_breakthrough(state):
        progress = state["progress"]
        events.append({"type": "breakthrough", "data": {"realm": progress["realm"], "stage": progress["realm_stage"]}})
    if can_body_breakthrough(state) and perform_body_breakthrough(state):
        progress = state["progress"]
        events.append(
            {"type": "body_breakthrough", "data": {"realm": progress["body_realm"], "stage": progress["body_stage"]}}
        )

    if turn_no % SUMMARY_INTERVAL == 0:
        update_story_summary(state, proposal.narrative, locale)

    state["turn_count"] = turn_no
    state["lifespan_urgency"] = lifespan_urgency(state)

    return TurnResult(
        narrative=proposal.narrative,
        choices=[choice.model_dump(exclude_none=True) for choice in proposal.choices],
        state=state,
        events=events,
        turn_no=turn_no,
        scene_type=scene_type,
        used_fallback=used_fallback,
        applied_deltas=applied,
        proposal={**proposal.model_dump(exclude_none=True), "sceneType": scene_type},
    )
