from __future__ import annotations

import json
import os
from typing import Any

import requests

from llm.schemas import TurnProposal


class LLMClientError(RuntimeError):
    pass


DELTA_FIELDS = (
    "stats.hp",
    "stats.qi",
    "stats.stamina",
    "stats.hp_max",
    "stats.qi_max",
    "attrs.str",
    "attrs.agi",
    "attrs.int",
    "attrs.perception",
    "attrs.luck",
    "progress.cultivation_exp",
    "progress.body_exp",
    "inventory.silver",
    "inventory.spirit_stones",
    "inventory.add_item",
    "inventory.loot",
    "karma",
    "techniques.add",
    "skills.add",
    "skills.gain_exp",
    "sect.join",
    "sect.leave",
    "sect.promote",
    "sect.contribution",
    "sect.reputation",
    "sect.mission",
    "location.place",
    "location.region",
)


class OllamaClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("OLLAMA_URL") or "http://localhost:11434").rstrip(
            "/"
        )
        self.model = model or os.getenv("OLLAMA_MODEL") or "gpt-oss:20b"
        if timeout is None:
            timeout = int(os.getenv("OLLAMA_TIMEOUT", "30"))
        self.timeout = timeout

    def generate_turn(
        self,
        state: dict,
        recent_narratives: list[str],
        scene_context: str,
        choice_id: str | None,
        locale: str,
        choice_text: str | None = None,
    ) -> TurnProposal:
        attempts = 0
        last_error: str | None = None
        while attempts < 3:
            attempts += 1
            try:
                content = self._chat(
                    messages=_turn_messages(
                        state,
                        recent_narratives,
                        scene_context,
                        choice_id,
                        locale,
                        choice_text,
                        attempts,
                        last_error,
                    ),
                    temperature=0.8,
                    format="json",
                )
                return _parse_turn_proposal(content)
            except Exception as exc:
                last_error = str(exc)
        raise LLMClientError(f"Failed to build turn JSON: {last_error}")

    def _chat(
        self,
        *,
        messages: list[dict[str, str]],
        temperature: float,
        format: str | None = None,
    ) -> str:
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if format:
            payload["format"] = format
        response = requests.post(url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()
        message = data.get("message", {})
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMClientError("Invalid response from Ollama.")
        return content


def _system_prompt(locale: str) -> str:
    language = "Vietnamese" if locale == "vi" else "English"
    return (
        "You are the narrator of a xianxia cultivation game and return JSON only. "
        f"Write the narrative and choice texts in {language}. "
        "Schema: {"
        '"locale": "vi|en", '
        '"narrative": "string", '
        '"choices": [{"id": "string", "text": "string", '
        '"cost": {"stamina": 0, "qi": 0, "silver": 0, "spirit_stones": 0, "time_segments": 0} | null}], '
        '"proposed_deltas": [{"field": "string", "operation": "add|subtract|set|multiply", "value": "any"}], '
        '"events": [{"type": "string", "data": {"any": "json"}}]'
        "}. "
        f"Allowed delta fields: {', '.join(DELTA_FIELDS)}. "
        "Every change described in the narrative must appear in proposed_deltas. "
        "Techniques go through techniques.add and skills through skills.add, never inventory.add_item. "
        "Offer 2 to 4 choices. No markdown, no extra keys."
    )


def _state_summary(state: dict) -> dict[str, Any]:
    progress = state.get("progress", {})
    return {
        "name": state.get("name"),
        "age": state.get("age"),
        "realm": progress.get("realm"),
        "realm_stage": progress.get("realm_stage"),
        "cultivation_exp": progress.get("cultivation_exp"),
        "cultivation_path": progress.get("cultivation_path"),
        "body_realm": progress.get("body_realm"),
        "spirit_root": state.get("spirit_root"),
        "stats": state.get("stats"),
        "attrs": state.get("attrs"),
        "silver": state.get("inventory", {}).get("silver"),
        "spirit_stones": state.get("inventory", {}).get("spirit_stones"),
        "items": [item.get("name") for item in state.get("inventory", {}).get("items", [])[:10]],
        "techniques": [technique.get("name") for technique in state.get("techniques", [])],
        "skills": [skill.get("name") for skill in state.get("skills", [])],
        "sect": state.get("sect"),
        "location": state.get("location"),
        "time": {
            "day": state.get("time_day"),
            "month": state.get("time_month"),
            "year": state.get("time_year"),
            "segment": state.get("time_segment"),
        },
        "karma": state.get("karma"),
        "lifespan_urgency": state.get("lifespan_urgency"),
        "story_summary": state.get("story_summary"),
    }


def _turn_messages(
    state: dict,
    recent_narratives: list[str],
    scene_context: str,
    choice_id: str | None,
    locale: str,
    choice_text: str | None,
    attempt: int,
    last_error: str | None,
) -> list[dict[str, str]]:
    system = _system_prompt(locale)
    if attempt > 1 and last_error:
        system += f" Previous output invalid: {last_error}. Return JSON only."

    user = {
        "state": _state_summary(state),
        "recent_narratives": recent_narratives,
        "scene_context": scene_context,
        "choice_id": choice_id,
        "choice_text": choice_text,
        "avoid_repeating": "Do not reuse settings or events from recent_narratives.",
    }
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": json.dumps(user, ensure_ascii=False)},
    ]


def _parse_turn_proposal(content: str) -> TurnProposal:
    payload = _extract_json(content)
    return TurnProposal.model_validate(payload)


def _extract_json(content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = content.find("{")
    end = content.rfind("}")
    if start >= 0 and end > start:
        data = json.loads(content[start : end + 1])
        if isinstance(data, dict):
            return data
    raise LLMClientError("Failed to parse turn JSON.")
