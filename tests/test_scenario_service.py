import pytest

from chatbot_test_platform.core.aggregator import RunReportAggregator
from chatbot_test_platform.core.errors import ScenarioNotFoundError, ScenarioPreconditionError
from chatbot_test_platform.core.runner import ScenarioRunner
from chatbot_test_platform.scenarios.model import CaseDefinition, CaseStatus, ScenarioDefinition, ScenarioStatus
from chatbot_test_platform.services.scenario_service import ScenarioService
from chatbot_test_platform.storage.scenario_store import ScenarioStore

from fakes import FakeChatClient


def _service(database, replies=None) -> ScenarioService:
    store = ScenarioStore(database)
    runner = ScenarioRunner(
        FakeChatClient(replies or {}),
        aggregator=RunReportAggregator(store),
        pacing_delay=0,
    )
    return ScenarioService(database, runner, store=store)


async def test_create_scenario_is_draft_and_skips_blank_messages(database) -> None:
    service = _service(database)

    scenario = await service.create_scenario(
        user_id="user-1",
        chatbot_id="bot-1",
        name="  Hours  ",
        cases=[
            {"message": "Hi"},
            {"message": "   ", "expected_response": "ignored"},
            {"message": "What are your hours?", "expected_response": "9 AM to 5 PM"},
        ],
    )

    assert scenario.status == ScenarioStatus.DRAFT
    assert scenario.name == "Hours"
    assert [(c.id, c.message) for c in scenario.test_cases] == [
        ("msg-0", "Hi"),
        ("msg-1", "What are your hours?"),
    ]
    assert all(c.status == CaseStatus.PENDING for c in scenario.test_cases)


async def test_create_requires_name(database) -> None:
    with pytest.raises(ScenarioPreconditionError):
        await _service(database).create_scenario("user-1", "bot-1", " ")


async def test_list_filters_by_owner_and_chatbot_newest_first(database) -> None:
    service = _service(database)
    older = await service.create_scenario("user-1", "bot-1", "older")
    newer = await service.create_scenario("user-1", "bot-1", "newer")
    await service.create_scenario("user-1", "bot-2", "other bot")
    await service.create_scenario("user-2", "bot-1", "other user")

    mine = await service.list_scenarios("user-1", chatbot_id="bot-1")
    assert [s.id for s in mine] == [newer.id, older.id]
    assert len(await service.list_scenarios("user-1")) == 3


async def test_update_archive_and_delete(database) -> None:
    service = _service(database)
    scenario = await service.create_scenario("user-1", "bot-1", "draft one")

    updated = await service.update_scenario(
        scenario.id,
        description="now with cases",
        cases=[{"message": "Hello?"}],
    )
    assert updated.description == "now with cases"
    assert [c.message for c in updated.test_cases] == ["Hello?"]

    archived = await service.archive_scenario(scenario.id)
    assert archived.status == ScenarioStatus.ARCHIVED

    assert await service.delete_scenario(scenario.id) is True
    assert await service.delete_scenario(scenario.id) is False
    with pytest.raises(ScenarioNotFoundError):
        await service.get_scenario(scenario.id)


async def test_run_scenario_persists_results_and_activates(database) -> None:
    service = _service(database, {
        "Hi": "Hello there!",
        "What are your hours?": "I don't have that information",
    })
    scenario = await service.create_scenario(
        "user-1",
        "bot-1",
        "hours",
        cases=[
            {"message": "Hi"},
            {"message": "What are your hours?", "expected_response": "9 AM to 5 PM"},
        ],
    )

    outcome = await service.run_scenario(scenario.id)

    assert outcome.saved
    assert outcome.report.success_rate_percent == 50
    stored = await service.get_scenario(scenario.id)
    assert stored.status == ScenarioStatus.ACTIVE
    assert stored.last_run_report.failed_cases == 1
    assert [c.status for c in stored.test_cases] == [CaseStatus.PASSED, CaseStatus.FAILED]
    assert stored.test_cases[1].actual_response == "I don't have that information"


async def test_run_empty_scenario_leaves_record_untouched(database) -> None:
    service = _service(database)
    scenario = await service.create_scenario("user-1", "bot-1", "empty")

    with pytest.raises(ScenarioPreconditionError):
        await service.run_scenario(scenario.id)

    stored = await service.get_scenario(scenario.id)
    assert stored.status == ScenarioStatus.DRAFT
    assert stored.last_run_report is None


async def test_archived_scenario_cannot_run(database) -> None:
    service = _service(database, {"Hi": "hey"})
    scenario = await service.create_scenario("user-1", "bot-1", "old", cases=[{"message": "Hi"}])
    await service.archive_scenario(scenario.id)

    with pytest.raises(ScenarioPreconditionError):
        await service.run_scenario(scenario.id)


async def test_import_definition_uses_file_chatbot(database) -> None:
    definition = ScenarioDefinition(
        name="imported",
        chatbot_id="bot-9",
        cases=[CaseDefinition(message="Hi"), CaseDefinition(message="Price?", expected_response="$")],
    )

    scenario = await _service(database).import_definition(definition, user_id="user-1")

    assert scenario.chatbot_id == "bot-9"
    assert scenario.test_cases[1].expected_response == "$"


async def test_archived_scenario_status_is_terminal(database) -> None:
    service = _service(database)
    scenario = await service.create_scenario("user-1", "bot-1", "retired")
    await service.archive_scenario(scenario.id)

    for status in ("draft", "active"):
        with pytest.raises(ScenarioPreconditionError):
            await service.update_scenario(scenario.id, status=status)

    assert (await service.archive_scenario(scenario.id)).status == ScenarioStatus.ARCHIVED
    assert (await service.get_scenario(scenario.id)).status == ScenarioStatus.ARCHIVED


async def test_activation_only_happens_through_a_run(database) -> None:
    service = _service(database)
    scenario = await service.create_scenario("user-1", "bot-1", "fresh")

    with pytest.raises(ScenarioPreconditionError):
        await service.update_scenario(scenario.id, status="active")

    same = await service.update_scenario(scenario.id, status="draft")
    assert same.status == ScenarioStatus.DRAFT


async def test_update_rejects_blank_name(database) -> None:
    service = _service(database)
    scenario = await service.create_scenario("user-1", "bot-1", "named")

    with pytest.raises(ScenarioPreconditionError):
        await service.update_scenario(scenario.id, name="   ")

    assert (await service.get_scenario(scenario.id)).name == "named"
