from rules.character import ELEMENTS, SPIRIT_ROOT_GRADES, create_initial_state, generate_spirit_root
from rules.core import DeterministicRng
from rules.migrations import CURRENT_STATE_VERSION
from rules.settings import normalize_locale


def test_spirit_root_is_deterministic_and_valid() -> None:
    first = generate_spirit_root(DeterministicRng("seed-a"))
    second = generate_spirit_root(DeterministicRng("seed-a"))

    assert first == second
    assert first["grade"] in SPIRIT_ROOT_GRADES
    assert 1 <= len(first["elements"]) <= 2
    assert len(set(first["elements"])) == len(first["elements"])
    assert all(element in ELEMENTS for element in first["elements"])


def test_initial_state_defaults() -> None:
    state = create_initial_state("Mai", 18, {"elements": ["Thủy"], "grade": "Hiếm"}, "en")

    assert state["stats"] == {
        "hp": 100,
        "hp_max": 100,
        "qi": 0,
        "qi_max": 0,
        "stamina": 100,
        "stamina_max": 100,
    }
    assert state["progress"]["realm"] == "PhàmNhân"
    assert state["progress"]["realm_stage"] == 0
    assert state["inventory"] == {"silver": 100, "spirit_stones": 0, "items": []}
    assert state["equipped_items"] == {}
    assert state["location"]["place"] == "Willow Village"
    assert state["turn_count"] == 0
    assert state["state_version"] == CURRENT_STATE_VERSION
    assert "Mai" in state["story_summary"]


def test_normalize_locale_aliases() -> None:
    assert normalize_locale("EN-us") == "en"
    assert normalize_locale("Vietnamese") == "vi"
    assert normalize_locale("fr", fallback="en") == "en"
