from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from rules.core import DeterministicRng

VARIETY_MIN_CANDIDATES = 2


@dataclass(frozen=True)
class SceneChoice:
    id: str
    text: str
    text_en: str
    cost: dict | None = None

    def for_locale(self, locale: str) -> dict:
        choice = {"id": self.id, "text": self.text_en if locale == "en" else self.text}
        if self.cost:
            choice["cost"] = dict(self.cost)
        return choice


@dataclass(frozen=True)
class SceneTemplate:
    id: str
    name: str
    name_en: str
    category: str
    tier: int
    weight: int
    context: str
    context_en: str
    choices: tuple[SceneChoice, ...]
    tags: tuple[str, ...] = ()
    min_realm_stage: int | None = None
    required_flags: tuple[str, ...] = field(default_factory=tuple)

    def is_eligible(self, state: dict) -> bool:
        if self.min_realm_stage is not None and state["progress"].get("realm_stage", 0) < self.min_realm_stage:
            return False
        flags = state.get("flags") or {}
        return all(flags.get(flag) for flag in self.required_flags)

    def prompt_context(self, state: dict, locale: str) -> str:
        template = self.context_en if locale == "en" else self.context
        return template.format(**_context_values(state))

    def base_choices(self, locale: str) -> list[dict]:
        return [choice.for_locale(locale) for choice in self.choices]


def _context_values(state: dict) -> dict:
    stats = state["stats"]
    progress = state["progress"]
    inventory = state["inventory"]
    spirit_root = state.get("spirit_root") or {}
    return {
        "place": (state.get("location") or {}).get("place", ""),
        "hp": stats["hp"],
        "hp_max": stats["hp_max"],
        "qi": stats["qi"],
        "qi_max": stats["qi_max"],
        "stamina": stats["stamina"],
        "stamina_max": stats["stamina_max"],
        "silver": inventory["silver"],
        "spirit_stones": inventory["spirit_stones"],
        "elements": ", ".join(spirit_root.get("elements") or []),
        "grade": spirit_root.get("grade", ""),
        "realm": progress.get("realm", ""),
        "stage": progress.get("realm_stage", 0),
        "exp": progress.get("cultivation_exp", 0),
        "karma": state.get("karma", 0),
        "luck": state["attrs"].get("luck", 0),
    }


SCENE_TEMPLATES: list[SceneTemplate] = [
    SceneTemplate(
        id="gather_herbs",
        name="Hái Linh Thảo",
        name_en="Gather Spirit Herbs",
        category="exploration",
        tier=1,
        weight=20,
        tags=("herbs", "gathering", "peaceful"),
        context="Nhân vật đang ở {place}, phát hiện một khu vực có linh thảo. Họ có thể hái linh thảo để bán hoặc dùng sau này.",
        context_en="The character is in {place} and discovers an area with spirit herbs. They can gather herbs to sell or use later.",
        choices=(
            SceneChoice("gather_carefully", "Hái cẩn thận", "Gather carefully", {"stamina": 1, "time_segments": 1}),
            SceneChoice("gather_quickly", "Hái nhanh", "Gather quickly", {"stamina": 2}),
            SceneChoice("ignore", "Bỏ qua", "Ignore"),
        ),
    ),
    SceneTemplate(
        id="bandit_encounter",
        name="Gặp Thổ Phỉ",
        name_en="Bandit Encounter",
        category="combat",
        tier=1,
        weight=15,
        tags=("bandits", "combat", "danger"),
        context="Nhân vật gặp một nhóm thổ phỉ đang cướp đường. Có {hp}/{hp_max} HP và {qi}/{qi_max} Linh lực.",
        context_en="The character encounters a group of bandits blocking the road. Has {hp}/{hp_max} HP and {qi}/{qi_max} Qi.",
        choices=(
            SceneChoice("fight", "Chiến đấu", "Fight", {"stamina": 2}),
            SceneChoice("negotiate", "Thương lượng", "Negotiate", {"silver": 20}),
            SceneChoice("flee", "Chạy trốn", "Flee", {"stamina": 3, "time_segments": 1}),
        ),
    ),
    SceneTemplate(
        id="traveling_merchant",
        name="Thương Nhân Lang Bạt",
        name_en="Traveling Merchant",
        category="social",
        tier=1,
        weight=12,
        tags=("merchant", "trade", "peaceful"),
        context="Nhân vật gặp một thương nhân lang bạt. Có {silver} bạc và {spirit_stones} linh thạch.",
        context_en="The character meets a traveling merchant. Has {silver} silver and {spirit_stones} spirit stones.",
        choices=(
            SceneChoice("browse_goods", "Xem hàng hóa", "Browse goods"),
            SceneChoice("sell_items", "Bán đồ", "Sell items"),
            SceneChoice("chat", "Trò chuyện", "Chat"),
            SceneChoice("leave", "Rời đi", "Leave"),
        ),
    ),
    SceneTemplate(
        id="sect_recruitment",
        name="Tuyển Đệ Tử Tông Môn",
        name_en="Sect Recruitment",
        category="social",
        tier=1,
        weight=8,
        tags=("sect", "opportunity", "important"),
        context="Một tông môn nhỏ đang tuyển đệ tử. Linh căn của nhân vật: {elements} - {grade}.",
        context_en="A small sect is recruiting disciples. Character's spirit root: {elements} - {grade}.",
        choices=(
            SceneChoice("apply", "Xin gia nhập", "Apply to join"),
            SceneChoice("ask_details", "Hỏi thêm chi tiết", "Ask for details"),
            SceneChoice("decline", "Từ chối", "Decline"),
        ),
    ),
    SceneTemplate(
        id="mysterious_cave",
        name="Hang Động Bí Ẩn",
        name_en="Mysterious Cave",
        category="exploration",
        tier=2,
        weight=10,
        tags=("cave", "danger", "treasure"),
        context="Nhân vật phát hiện một hang động có khí linh lực kỳ lạ. Có {hp}/{hp_max} HP.",
        context_en="The character discovers a cave with strange spiritual energy. Has {hp}/{hp_max} HP.",
        choices=(
            SceneChoice("explore_cave", "Thám hiểm hang động", "Explore the cave", {"stamina": 2, "time_segments": 1}),
            SceneChoice(
                "investigate_carefully", "Điều tra cẩn thận", "Investigate carefully", {"stamina": 1, "time_segments": 2}
            ),
            SceneChoice("mark_location", "Đánh dấu vị trí và quay lại sau", "Mark location and return later"),
        ),
    ),
    SceneTemplate(
        id="cultivation_session",
        name="Tu Luyện",
        name_en="Cultivation Session",
        category="cultivation",
        tier=0,
        weight=25,
        tags=("cultivation", "rest", "progress"),
        context="Nhân vật tìm nơi yên tĩnh để tu luyện. Tu vi hiện tại: {realm} tầng {stage}. Kinh nghiệm: {exp}.",
        context_en="The character finds a quiet place to cultivate. Current cultivation: {realm} stage {stage}. Experience: {exp}.",
        choices=(
            SceneChoice(
                "cultivate_short", "Tu luyện ngắn (1 giờ)", "Short cultivation (1 hour)", {"stamina": 1, "time_segments": 1}
            ),
            SceneChoice(
                "cultivate_long", "Tu luyện sâu (4 giờ)", "Deep cultivation (4 hours)", {"stamina": 2, "time_segments": 2}
            ),
            SceneChoice("meditate", "Thiền định", "Meditate", {"time_segments": 1}),
        ),
    ),
    SceneTemplate(
        id="rest_recovery",
        name="Nghỉ Ngơi",
        name_en="Rest and Recovery",
        category="rest",
        tier=0,
        weight=20,
        tags=("rest", "recovery", "safe"),
        context="Nhân vật cần nghỉ ngơi. HP: {hp}/{hp_max}, Stamina: {stamina}/{stamina_max}.",
        context_en="The character needs rest. HP: {hp}/{hp_max}, Stamina: {stamina}/{stamina_max}.",
        choices=(
            SceneChoice("short_rest", "Nghỉ ngơi ngắn", "Short rest", {"time_segments": 1}),
            SceneChoice("long_rest", "Nghỉ ngơi dài (ngủ)", "Long rest (sleep)", {"time_segments": 3}),
            SceneChoice("continue", "Tiếp tục hành trình", "Continue journey"),
        ),
    ),
    SceneTemplate(
        id="village_trouble",
        name="Dân Làng Cầu Cứu",
        name_en="Village in Trouble",
        category="social",
        tier=1,
        weight=10,
        tags=("village", "quest", "karma"),
        context="Một làng gần đó có người dân cầu cứu về vấn đề ma thú hoặc bệnh tật. Nhân quả hiện tại: {karma}.",
        context_en="Villagers nearby seek help with demon beasts or illness. Current karma: {karma}.",
        choices=(
            SceneChoice("help_village", "Giúp đỡ dân làng", "Help the villagers", {"stamina": 2, "time_segments": 2}),
            SceneChoice("ask_reward", "Hỏi về phần thưởng", "Ask about reward"),
            SceneChoice("ignore_plea", "Bỏ qua", "Ignore their plea"),
        ),
    ),
    SceneTemplate(
        id="hunt_demon_beast",
        name="Săn Yêu Thú",
        name_en="Hunt Demon Beast",
        category="combat",
        tier=2,
        weight=12,
        tags=("beast", "combat", "danger", "loot"),
        min_realm_stage=1,
        context="Nhân vật phát hiện dấu vết của yêu thú. Tu vi: {realm} tầng {stage}.",
        context_en="The character discovers traces of a demon beast. Cultivation: {realm} stage {stage}.",
        choices=(
            SceneChoice("track_beast", "Theo dấu vết", "Track the beast", {"stamina": 1, "time_segments": 1}),
            SceneChoice("set_trap", "Đặt bẫy", "Set a trap", {"stamina": 2, "time_segments": 2}),
            SceneChoice("avoid", "Tránh xa", "Avoid"),
        ),
    ),
    SceneTemplate(
        id="find_jade_slip",
        name="Nhặt Ngọc Giản",
        name_en="Find Jade Slip",
        category="exploration",
        tier=1,
        weight=8,
        tags=("treasure", "knowledge", "lucky"),
        context="Nhân vật tình cờ phát hiện một ngọc giản cũ. May mắn: {luck}.",
        context_en="The character stumbles upon an old jade slip. Luck: {luck}.",
        choices=(
            SceneChoice("examine_slip", "Kiểm tra ngọc giản", "Examine the jade slip", {"stamina": 1}),
            SceneChoice("take_and_leave", "Lấy và rời đi", "Take it and leave"),
            SceneChoice("leave_it", "Để lại", "Leave it"),
        ),
    ),
]

SCENES_BY_ID = {template.id: template for template in SCENE_TEMPLATES}


def applicable_templates(state: dict, templates: Iterable[SceneTemplate] | None = None) -> list[SceneTemplate]:
    return [template for template in (templates or SCENE_TEMPLATES) if template.is_eligible(state)]


def select_scene(templates: list[SceneTemplate], rng: DeterministicRng) -> SceneTemplate | None:
    return rng.weighted_choice(templates, label="scene")


def choose_scene(state: dict, recent_scene_types: Iterable[str], rng: DeterministicRng) -> SceneTemplate | None:
    """Picks a weighted scene, skipping recently used ones when enough remain.

    The filtered pool is only used when it keeps more than two candidates.
    """
    eligible = applicable_templates(state)
    recent = set(recent_scene_types)
    fresh = [template for template in eligible if template.id not in recent]
    pool = fresh if len(fresh) > VARIETY_MIN_CANDIDATES else eligible
    return select_scene(pool, rng)
