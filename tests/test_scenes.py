from rules.character import create_initial_state
from rules.core import DeterministicRng
from rules.scenes import SCENE_TEMPLATES, SCENES_BY_ID, applicable_templates, choose_scene, select_scene


def _state() -> dict:
    return create_initial_state("Lâm", 16, {"elements": ["Hỏa"], "grade": "PhổThông"}, "en")


def test_ten_templates_with_unique_ids() -> None:
    assert len(SCENE_TEMPLATES) == 10
    assert len(SCENES_BY_ID) == 10


def test_min_realm_stage_gates_templates() -> None:
    state = _state()

    ids = {template.id for template in applicable_templates(state)}
    assert "hunt_demon_beast" not in ids

    state["progress"]["realm_stage"] = 1
    ids = {template.id for template in applicable_templates(state)}
    assert "hunt_demon_beast" in ids


def test_choose_scene_avoids_recent_scenes() -> None:
    state = _state()
    recent = ["gather_herbs", "bandit_encounter", "traveling_merchant"]

    for i in range(50):
        scene = choose_scene(state, recent, DeterministicRng(f"variety-{i}"))
        assert scene.id not in recent


def test_choose_scene_falls_back_when_too_few_fresh() -> None:
    state = _state()
    eligible = [template.id for template in applicable_templates(state)]
    recent = eligible[:-2]

    scene = choose_scene(state, recent, DeterministicRng("fallback"))

    assert scene.id in eligible


def test_selection_is_deterministic() -> None:
    templates = applicable_templates(_state())

    assert select_scene(templates, DeterministicRng("s")) is select_scene(templates, DeterministicRng("s"))
    assert select_scene([], DeterministicRng("s")) is None


def test_prompt_context_and_choices_are_localized() -> None:
    state = _state()
    herbs = SCENES_BY_ID["gather_herbs"]

    assert "Willow Village" in herbs.prompt_context(state, "en")
    choices = herbs.base_choices("en")
    assert choices[0] == {"id": "gather_carefully", "text": "Gather carefully", "cost": {"stamina": 1, "time_segments": 1}}
    assert herbs.base_choices("vi")[2] == {"id": "ignore", "text": "Bỏ qua"}
