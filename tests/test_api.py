from datetime import datetime, timezone

import httpx
import pytest

from chatbot_test_platform.api import routes
from chatbot_test_platform.config.settings import settings
from chatbot_test_platform.main import build_service, create_app
from chatbot_test_platform.models.test_scenario import TestScenario
from chatbot_test_platform.scenarios.loader import ScenarioLoader
from chatbot_test_platform.ws.manager import WSConnectionManager

from fakes import FakeChatClient

REPLIES = {
    "Hi": "Hello there!",
    "What are your hours?": "We're open 9 AM to 5 PM EST",
}


@pytest.fixture
async def api(database, monkeypatch):
    service = build_service(database, FakeChatClient(REPLIES), ws_manager=WSConnectionManager())
    service.runner.pacing_delay = 0
    monkeypatch.setattr(routes, "scenario_service", service)
    monkeypatch.setattr(routes, "scenario_loader", ScenarioLoader(settings.SCENARIOS_DIR))

    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create(api, cases) -> dict:
    response = await api.post(
        "/api/scenarios",
        json={"user_id": "user-1", "chatbot_id": "bot-1", "name": "hours", "cases": cases},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_and_run_scenario(api) -> None:
    created = await _create(api, [
        {"message": "Hi"},
        {"message": "What are your hours?", "expected_response": "9 AM to 5 PM"},
    ])
    assert created["status"] == "draft"

    response = await api.post(f"/api/scenarios/{created['id']}/run", json={})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["saved"] is True
    assert body["warning"] is None
    assert body["report"]["total_cases"] == 2
    assert body["report"]["passed_cases"] == 2
    assert body["report"]["success_rate_percent"] == 100
    assert [c["id"] for c in body["test_cases"]] == ["msg-0", "msg-1"]

    stored = (await api.get(f"/api/scenarios/{created['id']}")).json()
    assert stored["status"] == "active"
    assert stored["last_run_report"]["passed_cases"] == 2


async def test_run_without_cases_is_bad_request(api) -> None:
    created = await _create(api, [])

    response = await api.post(f"/api/scenarios/{created['id']}/run", json={})
    assert response.status_code == 400


async def test_unknown_scenario_is_404(api) -> None:
    assert (await api.get("/api/scenarios/nope")).status_code == 404
    assert (await api.post("/api/scenarios/nope/run", json={})).status_code == 404
    assert (await api.delete("/api/scenarios/nope")).status_code == 404


async def test_list_patch_and_delete(api) -> None:
    created = await _create(api, [{"message": "Hi"}])

    listed = (await api.get("/api/scenarios", params={"user_id": "user-1"})).json()
    assert [s["id"] for s in listed] == [created["id"]]

    patched = await api.patch(f"/api/scenarios/{created['id']}", json={"name": "renamed"})
    assert patched.json()["name"] == "renamed"

    archived = await api.post(f"/api/scenarios/{created['id']}/archive")
    assert archived.json()["status"] == "archived"

    deleted = await api.delete(f"/api/scenarios/{created['id']}")
    assert deleted.json()["success"] is True


async def test_import_bundled_scenario(api) -> None:
    response = await api.post(
        "/api/scenarios/import/business_hours",
        json={"user_id": "user-1", "chatbot_id": "bot-1"},
    )
    assert response.status_code == 201, response.text
    assert len(response.json()["test_cases"]) == 2

    missing = await api.post("/api/scenarios/import/absent", json={"user_id": "user-1"})
    assert missing.status_code == 404


async def test_patch_cannot_revive_archived_scenario(api) -> None:
    created = await _create(api, [{"message": "Hi"}])
    await api.post(f"/api/scenarios/{created['id']}/archive")

    response = await api.patch(f"/api/scenarios/{created['id']}", json={"status": "draft"})
    assert response.status_code == 400

    empty_name = await api.patch(f"/api/scenarios/{created['id']}", json={"name": ""})
    assert empty_name.status_code == 422


async def test_get_scenario_with_legacy_results_without_timestamp(api, database) -> None:
    created = await _create(api, [{"message": "Hi"}])
    row = await database.get(TestScenario, created["id"])
    row.last_run_results = {"total_tests": 1, "passed_tests": 1, "failed_tests": 0, "success_rate": 100}
    row.last_run_at = datetime(2025, 11, 2, 8, 0, tzinfo=timezone.utc)
    await database.update(row)

    response = await api.get(f"/api/scenarios/{created['id']}")

    assert response.status_code == 200, response.text
    assert response.json()["last_run_report"]["passed_cases"] == 1
