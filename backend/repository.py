from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from db import SessionLocal, session_scope
from models import Run, TurnLog
from rules.character import create_run_record

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    success: bool
    error: str | None = None


@dataclass
class RunRecord:
    id: int
    world_seed: str
    locale: str
    state: dict


class RunRepository(Protocol):
    def create(
        self,
        *,
        name: str,
        age: int | None = None,
        locale: str | None = None,
        world_seed: str | None = None,
    ) -> RunRecord: ...

    def get(self, run_id: int) -> RunRecord | None: ...

    def update(self, run_id: int, state: dict) -> SaveResult: ...

    def add_turn_log(
        self,
        run_id: int,
        *,
        turn_no: int,
        choice_id: str | None,
        narrative: str,
        scene_type: str | None,
        events: list[dict],
        ai_json: dict | None = None,
    ) -> None: ...

    def recent_turn_logs(self, run_id: int, limit: int) -> list[dict]: ...


def _record(run: Run) -> RunRecord:
    return RunRecord(
        id=run.id,
        world_seed=run.world_seed,
        locale=run.locale,
        state=copy.deepcopy(run.state_json),
    )


class SqlRunRepository:
    def create(
        self,
        *,
        name: str,
        age: int | None = None,
        locale: str | None = None,
        world_seed: str | None = None,
    ) -> RunRecord:
        with session_scope() as db:
            run = create_run_record(db, name=name, age=age, locale=locale, world_seed=world_seed)
            logger.info("Created run %s with seed %s", run.id, run.world_seed)
            return _record(run)

    def get(self, run_id: int) -> RunRecord | None:
        with SessionLocal() as db:
            run = db.get(Run, run_id)
            return _record(run) if run is not None else None

    def update(self, run_id: int, state: dict) -> SaveResult:
        try:
            with SessionLocal() as db:
                run = db.get(Run, run_id)
                if run is None:
                    return SaveResult(False, "Run not found.")
                # JSONB columns only persist on reassignment.
                run.state_json = copy.deepcopy(state)
                run.state_version = state.get("state_version", run.state_version)
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning("Saving run %s failed: %s", run_id, exc)
            return SaveResult(False, str(exc))
        return SaveResult(True)

    def add_turn_log(
        self,
        run_id: int,
        *,
        turn_no: int,
        choice_id: str | None,
        narrative: str,
        scene_type: str | None,
        events: list[dict],
        ai_json: dict | None = None,
    ) -> None:
        with SessionLocal() as db:
            db.add(
                TurnLog(
                    run_id=run_id,
                    turn_no=turn_no,
                    choice_id=choice_id,
                    narrative=narrative,
                    scene_type=scene_type,
                    events_json=events,
                    ai_json=ai_json,
                )
            )
            db.commit()

    def recent_turn_logs(self, run_id: int, limit: int) -> list[dict]:
        with SessionLocal() as db:
            logs = (
                db.query(TurnLog)
                .filter(TurnLog.run_id == run_id)
                .order_by(TurnLog.turn_no.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "turn_no": log.turn_no,
                    "narrative": log.narrative,
                    "scene_type": log.scene_type,
                    "choice_id": log.choice_id,
                }
                for log in reversed(logs)
            ]
