from __future__ import annotations

from datetime import datetime, timezone

from rules.validation import DeltaValidationError, as_level, as_mapping, as_number, as_text, clamp, optional_number

SECT_RANKS = ["NgoạiMôn", "NộiMôn", "ChânTruyền", "TrưởngLão", "ChưởngMôn"]

RANK_BENEFITS = {
    "NgoạiMôn": {"cultivation_bonus": 5, "resource_access": False, "technique_access": False, "protection": True},
    "NộiMôn": {"cultivation_bonus": 10, "resource_access": True, "technique_access": False, "protection": True},
    "ChânTruyền": {"cultivation_bonus": 20, "resource_access": True, "technique_access": True, "protection": True},
    "TrưởngLão": {"cultivation_bonus": 30, "resource_access": True, "technique_access": True, "protection": True},
    "ChưởngMôn": {"cultivation_bonus": 50, "resource_access": True, "technique_access": True, "protection": True},
}

MAX_CONTRIBUTION_PER_TURN = 100
MAX_CULTIVATION_BONUS = 50
DEFAULT_CULTIVATION_BONUS = 5
DEFAULT_REPUTATION = 50


def _event(events: list[dict], event_type: str, data: dict) -> None:
    events.append({"type": event_type, "data": data})


def _membership(state: dict) -> dict:
    membership = state.get("sect_membership")
    if not membership:
        raise DeltaValidationError("Not a member of any sect.")
    return membership


def join_sect(state: dict, payload, events: list[dict], *, now: datetime | None = None) -> dict:
    data = as_mapping(payload, field="sect.join")
    sect_info = as_mapping(data.get("sect"), field="sect.join.sect")
    name = as_text(sect_info.get("name"), field="sect.join.sect.name")
    benefits = as_mapping(data.get("benefits") or {}, field="sect.join.benefits")
    cultivation_bonus = optional_number(
        benefits.get("cultivation_bonus"), DEFAULT_CULTIVATION_BONUS, field="sect.join.benefits.cultivation_bonus"
    )
    contribution = optional_number(data.get("contribution"), 0, field="sect.join.contribution")
    reputation = optional_number(data.get("reputation"), DEFAULT_REPUTATION, field="sect.join.reputation")
    tier = as_level(sect_info.get("tier"), field="sect.join.sect.tier")

    now = now or datetime.now(timezone.utc)
    rank = data.get("rank") if data.get("rank") in SECT_RANKS else SECT_RANKS[0]
    membership = {
        "sect": {
            "id": sect_info.get("id") or f"sect_{int(now.timestamp())}",
            "name": name,
            "name_en": sect_info.get("name_en") or name,
            "type": sect_info.get("type") or "Tổng",
            "element": sect_info.get("element"),
            "tier": tier,
            "description": sect_info.get("description"),
            "description_en": sect_info.get("description_en"),
        },
        "rank": rank,
        "contribution": clamp(contribution, 0, MAX_CONTRIBUTION_PER_TURN),
        "reputation": clamp(reputation, 0, 100),
        "joined_date": now.isoformat(),
        "missions_completed": 0,
        "mentor": data.get("mentor"),
        "mentor_en": data.get("mentor_en"),
        "benefits": {
            "cultivation_bonus": clamp(cultivation_bonus, 0, MAX_CULTIVATION_BONUS),
            "resource_access": bool(benefits.get("resource_access", False)),
            "technique_access": bool(benefits.get("technique_access", False)),
            "protection": bool(benefits.get("protection", True)),
        },
    }
    state["sect_membership"] = membership
    state["sect"] = membership["sect"]["name"]
    state["sect_en"] = membership["sect"]["name_en"]
    _event(events, "sect_join", {"sect": membership["sect"], "rank": rank})
    return membership


def leave_sect(state: dict, payload, events: list[dict]) -> None:
    membership = state.get("sect_membership")
    if not membership:
        return
    reason = payload.get("reason") if isinstance(payload, dict) else None
    state["sect_membership"] = None
    state["sect"] = None
    state["sect_en"] = None
    _event(events, "sect_expulsion", {"sect": membership["sect"]["name"], "reason": reason or "voluntary"})


def promote(state: dict, rank, events: list[dict]) -> None:
    membership = _membership(state)
    if rank not in SECT_RANKS:
        raise DeltaValidationError(f"Unknown sect rank: {rank!r}")
    old_rank = membership.get("rank")
    membership["rank"] = rank
    membership["benefits"] = dict(RANK_BENEFITS[rank])
    _event(
        events,
        "sect_promotion",
        {"oldRank": old_rank, "newRank": rank, "sect": membership["sect"]["name"]},
    )


def add_contribution(state: dict, value) -> None:
    membership = _membership(state)
    amount = min(abs(as_number(value, field="sect.contribution")), MAX_CONTRIBUTION_PER_TURN)
    membership["contribution"] = membership.get("contribution", 0) + amount


def adjust_reputation(state: dict, value) -> None:
    membership = _membership(state)
    change = as_number(value, field="sect.reputation")
    membership["reputation"] = clamp(membership.get("reputation", 0) + change, 0, 100)


def complete_mission(state: dict, value, events: list[dict]) -> None:
    membership = _membership(state)
    reward = clamp(as_number(value, field="sect.mission"), 0, MAX_CONTRIBUTION_PER_TURN)
    membership["missions_completed"] = membership.get("missions_completed", 0) + 1
    membership["contribution"] = membership.get("contribution", 0) + reward
    _event(
        events,
        "sect_mission",
        {
            "sect": membership["sect"]["name"],
            "contribution": reward,
            "missions_completed": membership["missions_completed"],
        },
    )
