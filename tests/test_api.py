from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import app.main as main_module
from app.main import app, get_generator, get_repository


@pytest.fixture
def client(repository, stub_generator):
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_generator] = lambda: stub_generator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_run(client, **payload) -> dict:
    response = client.post("/runs", json={"name": "Lâm", "world_seed": "api-seed", **payload})
    assert response.status_code == 200
    return response.json()


def test_create_and_get_run(client) -> None:
    created = _create_run(client, locale="en")

    assert created["locale"] == "en"
    assert created["state"]["name"] == "Lâm"

    fetched = client.get(f"/runs/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["state"]["turn_count"] == 0


def test_create_run_validates_input(client) -> None:
    assert client.post("/runs", json={"name": ""}).status_code == 422
    assert client.post("/runs", json={"name": "Lâm", "age": 3}).status_code == 422


def test_missing_run_is_404(client) -> None:
    assert client.get("/runs/404").status_code == 404
    assert client.post("/turn", json={"run_id": 404}).status_code == 404


def test_turn_endpoint(client, repository) -> None:
    run = _create_run(client)

    response = client.post("/turn", json={"run_id": run["id"]})

    assert response.status_code == 200
    body = response.json()
    assert body["turn_no"] == 1
    assert body["save_status"] == "saved"
    assert body["narrative"]
    assert "proposal" not in body
    assert repository.get(run["id"]).state["turn_count"] == 1


def test_turn_endpoint_dev_mode_exposes_proposal(client, monkeypatch) -> None:
    monkeypatch.setenv("DEV_MODE", "true")
    run = _create_run(client)

    body = client.post("/turn", json={"run_id": run["id"]}).json()

    assert body["used_fallback"] is False
    assert body["proposal"]["narrative"] == body["narrative"]


def test_turn_with_selected_choice(client) -> None:
    run = _create_run(client)
    client.post("/turn", json={"run_id": run["id"]})

    response = client.post(
        "/turn",
        json={
            "run_id": run["id"],
            "choice_id": "meditate",
            "selected_choice": {"id": "meditate", "text": "Thiền định", "cost": {"stamina": 5}},
        },
    )

    assert response.status_code == 200
    assert response.json()["state"]["stats"]["stamina"] == 95


def _give_item(repository, run_id: int, item: dict) -> None:
    state = repository.runs[run_id].state
    state["inventory"]["items"].append({"quantity": 1, **item})


def test_equip_and_unequip(client, repository) -> None:
    run = _create_run(client)
    _give_item(
        repository,
        run["id"],
        {"id": "iron_sword", "name": "Kiếm Sắt", "type": "Equipment", "equipment_slot": "Weapon"},
    )

    equipped = client.post(f"/runs/{run['id']}/equip", json={"item_id": "iron_sword"})
    assert equipped.status_code == 200
    assert equipped.json()["equipped_items"] == {"Weapon": "iron_sword"}

    removed = client.post(f"/runs/{run['id']}/equip", json={"action": "unequip", "slot": "Weapon"})
    assert removed.json()["equipped_items"] == {}
    assert client.post(f"/runs/{run['id']}/equip", json={"item_id": "ghost"}).status_code == 404


def test_enhance_endpoint(client, repository) -> None:
    run = _create_run(client)
    _give_item(
        repository,
        run["id"],
        {"id": "iron_sword", "name": "Kiếm Sắt", "type": "Equipment", "equipment_slot": "Weapon", "bonus_stats": {"str": 2}},
    )

    missing_stone = client.post(f"/runs/{run['id']}/enhance", json={"item_id": "iron_sword"})
    assert missing_stone.status_code == 400

    _give_item(repository, run["id"], {"id": "enhancement_stone_common", "type": "Material"})
    response = client.post(f"/runs/{run['id']}/enhance", json={"item_id": "iron_sword"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"]
    assert body["new_level"] == 1
    assert body["state"]["inventory"]["silver"] == 0


def test_use_item_learns_technique(client, repository) -> None:
    run = _create_run(client)
    _give_item(
        repository,
        run["id"],
        {"id": "fire_art", "name": "Hỏa Quyết", "name_en": "Fire Art", "type": "Main", "grade": "Mortal"},
    )

    response = client.post(f"/runs/{run['id']}/items/fire_art/use")

    assert response.status_code == 200
    state = response.json()["state"]
    assert state["techniques"][0]["id"] == "fire_art"
    assert state["inventory"]["items"] == []
    assert client.post(f"/runs/{run['id']}/items/fire_art/use").status_code == 404


def test_use_item_rejects_materials(client, repository) -> None:
    run = _create_run(client)
    _give_item(repository, run["id"], {"id": "ore", "name": "Quặng", "type": "Material"})

    assert client.post(f"/runs/{run['id']}/items/ore/use").status_code == 400


def test_exp_split_requires_dual_path(client, repository) -> None:
    run = _create_run(client)
    url = f"/runs/{run['id']}/exp_split"

    assert client.post(url, json={"exp_split": 60}).status_code == 400

    repository.runs[run["id"]].state["progress"]["cultivation_path"] = "dual"
    response = client.post(url, json={"exp_split": 60})
    assert response.json()["exp_split"] == 60
    assert client.post(url, json={"exp_split": 120}).status_code == 422


def test_activities_listing_and_perform(client) -> None:
    run = _create_run(client, locale="en")

    listing = client.get(f"/runs/{run['id']}/activities").json()
    rest = next(entry for entry in listing if entry["id"] == "rest")
    assert rest["name"] == "Rest"
    assert rest["cost"] == {"stamina": 0, "qi": 0, "time_segments": 1}

    response = client.post(
        f"/runs/{run['id']}/activities",
        json={"activity_id": "cultivate_qi", "duration": "half_day"},
    )
    assert response.status_code == 200
    assert response.json()["qi_exp"] > 0

    bad = client.post(f"/runs/{run['id']}/activities", json={"activity_id": "rest", "duration": "month"})
    assert bad.status_code == 400


def test_combat_endpoint(client) -> None:
    run = _create_run(client)

    response = client.post(f"/runs/{run['id']}/combat", json={"difficulty": "easy"})

    assert response.status_code == 200
    body = response.json()
    assert body["enemy"]["loot_table_id"] == "common_herbs"
    assert body["rounds"] >= 1
    assert body["state"]["time_segment"] == "Chiều"
    assert client.post(f"/runs/{run['id']}/combat", json={"difficulty": "mythic"}).status_code == 422


def test_enhance_retry_after_failure_draws_a_new_seed(client, repository, monkeypatch) -> None:
    run = _create_run(client)
    state = repository.runs[run["id"]].state
    state["inventory"]["silver"] = 100000
    _give_item(
        repository,
        run["id"],
        {"id": "jade_blade", "name": "Ngọc Kiếm", "type": "Equipment", "equipment_slot": "Weapon", "enhancement_level": 9},
    )
    _give_item(repository, run["id"], {"id": "enhancement_stone_epic", "type": "Material", "quantity": 5})
    seeds: list[str] = []
    real_attempt = main_module.attempt_enhancement

    def failing_attempt(state, item_id, rng):
        seeds.append(rng.seed)
        return real_attempt(state, item_id, SimpleNamespace(random=lambda label=None: 0.99))

    monkeypatch.setattr(main_module, "attempt_enhancement", failing_attempt)

    first = client.post(f"/runs/{run['id']}/enhance", json={"item_id": "jade_blade"})
    second = client.post(f"/runs/{run['id']}/enhance", json={"item_id": "jade_blade"})

    assert first.status_code == second.status_code == 200
    assert not first.json()["success"]
    assert len(set(seeds)) == 2
    blade = repository.get(run["id"]).state["inventory"]["items"][0]
    assert blade["enhance_attempts"] == 2
    assert blade["enhancement_level"] == 9


def test_use_item_rejects_malformed_manual(client, repository) -> None:
    run = _create_run(client)
    _give_item(
        repository,
        run["id"],
        {"id": "odd_art", "name": "Quái Quyết", "name_en": "Odd Art", "type": "Main", "grade": "Mortal", "cultivation_speed_bonus": "fast"},
    )

    response = client.post(f"/runs/{run['id']}/items/odd_art/use")

    assert response.status_code == 400
    state = repository.get(run["id"]).state
    assert state["techniques"] == []
    assert state["inventory"]["items"][0]["id"] == "odd_art"


def test_discard_item_endpoint(client, repository) -> None:
    run = _create_run(client)
    _give_item(repository, run["id"], {"id": "herb", "name": "Thảo", "type": "Material", "quantity": 3})
    _give_item(repository, run["id"], {"id": "iron_sword", "name": "Kiếm Sắt", "type": "Equipment", "equipment_slot": "Weapon"})
    client.post(f"/runs/{run['id']}/equip", json={"item_id": "iron_sword"})

    partial = client.post(f"/runs/{run['id']}/items/herb/discard", json={"quantity": 2})
    assert partial.status_code == 200
    assert partial.json()["remaining"] == 1

    assert client.post(f"/runs/{run['id']}/items/herb/discard", json={"quantity": 5}).status_code == 400
    assert client.post(f"/runs/{run['id']}/items/herb/discard", json={"quantity": 0}).status_code == 422
    assert client.post(f"/runs/{run['id']}/items/ghost/discard").status_code == 404

    sword = client.post(f"/runs/{run['id']}/items/iron_sword/discard")
    assert sword.status_code == 200
    state = sword.json()["state"]
    assert state["equipped_items"] == {}
    assert [item["id"] for item in state["inventory"]["items"]] == ["herb"]


def test_abilities_endpoint_learns_and_swaps(client, repository) -> None:
    run = _create_run(client)
    state = repository.runs[run["id"]].state
    state["techniques"] = [{"id": "water_art", "name": "Thủy Quyết", "type": "Main", "grade": "Mortal"}]
    state["technique_queue"] = [
        {"id": "fire_art", "name": "Hỏa Quyết", "type": "Main", "grade": "Mortal"},
        {"id": "wind_art", "name": "Phong Quyết", "type": "Support", "grade": "Mortal"},
    ]

    learned = client.post(
        f"/runs/{run['id']}/abilities",
        json={"ability_type": "technique", "action": "learn", "queue_id": "fire_art"},
    )
    assert learned.status_code == 200
    assert [entry["id"] for entry in learned.json()["state"]["techniques"]] == ["water_art", "fire_art"]

    swapped = client.post(
        f"/runs/{run['id']}/abilities",
        json={"ability_type": "technique", "action": "swap", "active_id": "water_art", "queue_id": "wind_art"},
    )
    body = swapped.json()["state"]
    assert [entry["id"] for entry in body["techniques"]] == ["wind_art", "fire_art"]
    assert [entry["id"] for entry in body["technique_queue"]] == ["water_art"]

    missing = client.post(
        f"/runs/{run['id']}/abilities",
        json={"ability_type": "skill", "action": "forget", "active_id": "ghost_palm"},
    )
    assert missing.status_code == 400
    invalid = client.post(f"/runs/{run['id']}/abilities", json={"ability_type": "technique", "action": "steal"})
    assert invalid.status_code == 422


def test_dungeon_endpoints(client, repository) -> None:
    run = _create_run(client, locale="en")

    listing = client.get(f"/runs/{run['id']}/dungeons").json()
    assert {entry["id"] for entry in listing["dungeons"]} == {"spirit_herb_realm", "phoenix_tomb"}
    assert listing["progress"]["dungeon_id"] is None

    assert client.post(f"/runs/{run['id']}/dungeon", json={"action": "enter"}).status_code == 400
    assert client.post(f"/runs/{run['id']}/dungeon", json={"action": "explore"}).status_code == 400

    entered = client.post(f"/runs/{run['id']}/dungeon", json={"action": "enter", "dungeon_id": "spirit_herb_realm"})
    assert entered.status_code == 200
    assert entered.json()["state"]["inventory"]["silver"] == 0

    state = repository.runs[run["id"]].state
    state["stats"].update(hp=100000, hp_max=100000)
    state["attrs"].update(str=1000, perception=13)
    explored = client.post(f"/runs/{run['id']}/dungeon", json={"action": "explore"})
    assert explored.status_code == 200
    assert explored.json()["dungeon"]["floors_cleared"] == [1]

    left = client.post(f"/runs/{run['id']}/dungeon", json={"action": "exit"})
    assert left.status_code == 200
    assert left.json()["completed"] is False
    assert left.json()["dungeon"]["dungeon_id"] is None
    assert client.post(f"/runs/{run['id']}/dungeon", json={"action": "dance"}).status_code == 422
