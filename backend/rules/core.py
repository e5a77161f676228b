from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Callable, Sequence, TypeVar

T = TypeVar("T")


def turn_seed(world_seed: str, turn_no: int) -> str:
    return f"{world_seed}-turn-{turn_no}"


@dataclass
class DeterministicRng:
    seed: str
    draw_log: list[dict] = field(default_factory=list)
    _random: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._random = random.Random(self.seed)

    def _log_draw(self, kind: str, result, label: str | None) -> None:
        self.draw_log.append({"kind": kind, "result": result, "label": label})

    def random(self, *, label: str | None = None) -> float:
        result = self._random.random()
        self._log_draw("random", result, label)
        return result

    def random_int(self, lo: int, hi: int, *, label: str | None = None) -> int:
        if hi < lo:
            raise ValueError(f"Invalid range: {lo}..{hi}")
        result = math.floor(self._random.random() * (hi - lo + 1)) + lo
        self._log_draw("random_int", result, label)
        return result

    def random_element(self, items: Sequence[T], *, label: str | None = None) -> T:
        if not items:
            raise ValueError("Cannot pick from an empty sequence.")
        index = self.random_int(0, len(items) - 1, label=label)
        return items[index]

    def chance(self, probability: float, *, label: str | None = None) -> bool:
        result = self._random.random() < probability
        self._log_draw("chance", result, label)
        return result

    def weighted_choice(
        self,
        entries: Sequence[T],
        weight: Callable[[T], float] | None = None,
        *,
        label: str | None = None,
    ) -> T | None:
        if not entries:
            return None
        weight_of = weight or _default_weight
        total = sum(weight_of(entry) for entry in entries)
        roll = self.random(label=label) * total
        for entry in entries:
            roll -= weight_of(entry)
            if roll <= 0:
                return entry
        return entries[-1]


def _default_weight(entry) -> float:
    if isinstance(entry, dict):
        return entry.get("weight", 0)
    return getattr(entry, "weight", 0)


def rng_for_turn(world_seed: str, turn_no: int) -> DeterministicRng:
    return DeterministicRng(turn_seed(world_seed, turn_no))
