from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue

DeltaOperation = Literal["add", "subtract", "set", "multiply"]


class ChoiceCost(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    stamina: int | None = Field(default=None, ge=0)
    qi: int | None = Field(default=None, ge=0)
    silver: int | None = Field(default=None, ge=0)
    spirit_stones: int | None = Field(default=None, ge=0)
    time_segments: int | None = Field(default=None, ge=0)


class Choice(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    cost: ChoiceCost | None = None


class ProposedDelta(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    field: str = Field(min_length=1)
    operation: DeltaOperation
    value: JsonValue = None


class GameEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    type: str = Field(min_length=1)
    data: dict[str, JsonValue] = Field(default_factory=dict)


class TurnProposal(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    locale: Literal["vi", "en"] | None = None
    narrative: str = Field(min_length=1)
    choices: list[Choice] = Field(default_factory=list)
    proposed_deltas: list[ProposedDelta] = Field(default_factory=list)
    events: list[GameEvent] = Field(default_factory=list)
