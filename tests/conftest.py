import copy
from datetime import datetime, timezone

import pytest

from llm.schemas import TurnProposal
from repository import RunRecord, SaveResult
from rules.character import create_initial_state, generate_spirit_root
from rules.core import DeterministicRng
from rules.settings import normalize_locale

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryRunRepository:
    def __init__(self, *, fail_saves: bool = False) -> None:
        self.runs: dict[int, RunRecord] = {}
        self.turn_logs: list[dict] = []
        self.fail_saves = fail_saves

    def create(self, *, name, age=None, locale=None, world_seed=None) -> RunRecord:
        locale = normalize_locale(locale, fallback="vi")
        world_seed = world_seed or f"seed-{len(self.runs) + 1}"
        spirit_root = generate_spirit_root(DeterministicRng(f"{world_seed}-character"))
        state = create_initial_state(name, age or 16, spirit_root, locale, now=NOW)
        record = RunRecord(id=len(self.runs) + 1, world_seed=world_seed, locale=locale, state=state)
        self.runs[record.id] = record
        return copy.deepcopy(record)

    def get(self, run_id: int) -> RunRecord | None:
        record = self.runs.get(run_id)
        return copy.deepcopy(record) if record else None

    def update(self, run_id: int, state: dict) -> SaveResult:
        if self.fail_saves:
            return SaveResult(False, "database offline")
        self.runs[run_id].state = copy.deepcopy(state)
        return SaveResult(True)

    def add_turn_log(self, run_id, *, turn_no, choice_id, narrative, scene_type, events, ai_json=None) -> None:
        self.turn_logs.append(
            {
                "run_id": run_id,
                "turn_no": turn_no,
                "choice_id": choice_id,
                "narrative": narrative,
                "scene_type": scene_type,
                "events": events,
            }
        )

    def recent_turn_logs(self, run_id: int, limit: int) -> list[dict]:
        return [log for log in self.turn_logs if log["run_id"] == run_id][-limit:]


class StubGenerator:
    def __init__(self, deltas: list[dict] | None = None, narrative: str = "Mây trôi qua đỉnh núi.") -> None:
        self.deltas = deltas or []
        self.narrative = narrative
        self.calls: list[dict] = []

    def generate_turn(self, state, recent_narratives, scene_context, choice_id, locale, choice_text=None):
        self.calls.append(
            {
                "recent_narratives": list(recent_narratives),
                "scene_context": scene_context,
                "choice_id": choice_id,
                "locale": locale,
                "choice_text": choice_text,
            }
        )
        return TurnProposal.model_validate(
            {
                "narrative": self.narrative,
                "choices": [
                    {"id": "meditate", "text": "Thiền định", "cost": {"stamina": 5}},
                    {"id": "travel", "text": "Lên đường"},
                ],
                "proposed_deltas": self.deltas,
                "events": [],
            }
        )


class FailingGenerator:
    def generate_turn(self, *args, **kwargs):
        raise RuntimeError("model offline")


@pytest.fixture
def repository() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def stub_generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def failing_generator() -> FailingGenerator:
    return FailingGenerator()


@pytest.fixture
def make_generator():
    return StubGenerator


@pytest.fixture
def failing_repository() -> InMemoryRunRepository:
    return InMemoryRunRepository(fail_saves=True)
