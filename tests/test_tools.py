"""Tests for the model-facing tools and the dispatcher."""

import asyncio

import pytest
import pytest_asyncio
from structlog.testing import capture_logs

from ai_assistant.ai import prompts
from ai_assistant.ai.endpoints import EndpointCatalog
from ai_assistant.ai.history import ChatHistoryStore
from ai_assistant.ai.requester import ModelRequester
from ai_assistant.ai.tools.base import Tool
from ai_assistant.ai.tools.external import ExternalTool
from ai_assistant.ai.tools.history import ClearHistoryTool
from ai_assistant.ai.tools.registry import ToolDispatcher
from ai_assistant.ai.tools.scheduler import SchedulerTool
from ai_assistant.ai.tools.states import StatesTool
from ai_assistant.ai.tools.trigger import TriggerTool
from ai_assistant.config import EndpointConfig, FunctionConfig, SchedulerServiceConfig
from ai_assistant.core.tasks import BackgroundTasks
from ai_assistant.services.scheduler import TaskScheduler
from ai_assistant.services.triggers import ConditionTriggerEngine
from tests.fakes import FakeProvider, reply


def requester(store, *responses):
    provider = FakeProvider(*responses)
    return ModelRequester(provider, store, "tool-model"), provider


@pytest_asyncio.fixture
async def catalog(store):
    await store.set_object(
        "house.heating.target",
        {"type": "number", "unit": "°C", "min": 5, "max": 30, "write": True, "read": True},
    )
    await store.set_object("house.light", {"type": "boolean", "write": True, "read": True})
    await store.set("house.heating.target", 20)
    await store.set("house.light", False)
    return EndpointCatalog(
        store,
        [
            EndpointConfig(name="Heating", obj_id="house.heating.target", sort="Climate"),
            EndpointConfig(name="Light", obj_id="house.light", sort="Lights"),
            EndpointConfig(name="Hidden", obj_id="house.hidden", active=False),
        ],
    )


class TestStatesTool:
    @pytest.mark.asyncio
    async def test_sets_and_reads_states(self, store, catalog):
        model_reply = reply(
            reasoning="user wants it warmer",
            noticeToAssistant="Heating set",
            **{
                "set-states": [{"name": "Heating", "id": "house.heating.target", "value": 22}],
                "get-states": [{"name": "Light", "id": "house.light"}, {"name": "Ghost", "id": "no.such"}],
            },
        )
        req, provider = requester(store, model_reply)
        tool = StatesTool(req, store, catalog)

        result = await tool.execute("Make it 22 degrees and tell me if the light is on")

        state = await store.get("house.heating.target")
        assert state.value == 22
        assert state.ack is False
        assert result.tool == "StatesTool"
        assert result.reasoning == "user wants it warmer"
        [heating] = result.result["setStates"]
        assert heating["value"] == 22
        assert heating["unit"] == "°C"
        assert heating["type"] == "number"
        assert heating["last_change"]
        assert [s["id"] for s in result.result["getStates"]] == ["house.light"]
        assert "reasoning" not in result.to_payload()

        message = provider.calls[0]["messages"][0]["content"]
        assert "house.heating.target" in message
        assert "house.hidden" not in message
        assert provider.calls[0]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_empty_plan_and_failed_request(self, store, catalog):
        req, _ = requester(store, "{}")
        tool = StatesTool(req, store, catalog)
        result = await tool.execute("anything")
        assert result.result == {"setStates": [], "getStates": []}

        req, _ = requester(store, {"error": "down"})
        tool = StatesTool(req, store, catalog)
        with capture_logs() as logs:
            assert await tool.execute("anything") is None
        assert any(e["event"] == "tool_request_failed" for e in logs)

    @pytest.mark.asyncio
    async def test_catalog_groups_by_sort(self, catalog):
        structure = await catalog.structure()
        assert set(structure) == {"Climate", "Lights"}
        heating = structure["Climate"][0]
        assert (heating["unit"], heating["min"], heating["max"]) == ("°C", 5, 30)


@pytest_asyncio.fixture
async def task_scheduler(store, fake_orchestrator):
    scheduler = TaskScheduler(SchedulerServiceConfig(timezone="UTC"), store)
    scheduler.set_app_context(fake_orchestrator)
    await scheduler.start()
    yield scheduler
    await scheduler.stop()


class TestSchedulerTool:
    @pytest.mark.asyncio
    async def test_creates_and_deletes(self, store, task_scheduler):
        existing = await task_scheduler.create_cronjob("0 6 * * *", "Wake me up")
        model_reply = reply(
            reasoning="r",
            noticeToAssistant="scheduled",
            createCronjobs=[
                {"cronExpression": "0 7 * * 1-5", "instruction": "Weather report"},
                {"cronExpression": "tomorrow", "instruction": "Invalid"},
            ],
            createTimeouts=[
                {"timeoutSeconds": 600, "instruction": "Check the oven"},
                {"timeoutSeconds": "soon", "instruction": "Invalid"},
            ],
            deleteCronjobs=[existing.id, "cronjobs.unknown"],
        )
        req, provider = requester(store, model_reply)
        tool = SchedulerTool(req, task_scheduler)

        result = await tool.execute("Weather on weekdays at 7, oven in 10 minutes, no more wake ups")

        assert existing.id in provider.calls[0]["messages"][0]["content"]
        assert [c["cron"] for c in result.result["createdCronjobs"]] == ["0 7 * * 1-5"]
        assert result.result["deletedCronjobs"] == [existing.id]
        assert result.result["createdTimeouts"] == [{"timeoutSeconds": 600.0, "instruction": "Check the oven"}]
        persisted = await task_scheduler.list_cronjobs()
        assert [job.instruction for job in persisted] == ["Weather report"]
        assert any(j.startswith("timeout.") for j in task_scheduler.pending_job_ids())


class TestTriggerTool:
    @pytest.mark.asyncio
    async def test_creates_and_deletes(self, store, catalog, fake_orchestrator):
        engine = ConditionTriggerEngine(store)
        engine.set_app_context(fake_orchestrator, BackgroundTasks())
        await engine.start()
        old = await engine.create_trigger("house.light", "Old rule")
        model_reply = reply(
            reasoning="r",
            noticeToAssistant="done",
            createTriggers=[
                {
                    "objectId": "house.heating.target",
                    "condition": {"operator": ">", "value": 25},
                    "onlyOnStateValueChange": True,
                    "executeOnlyOnce": True,
                    "instruction": "Warn me",
                },
                {"objectId": "house.light", "condition": {"operator": "~", "value": "1"}, "instruction": "Bad"},
                {"objectId": "", "instruction": "No object"},
            ],
            deleteTriggers=[old.id],
        )
        req, provider = requester(store, model_reply)
        tool = TriggerTool(req, engine, catalog)

        try:
            result = await tool.execute("Warn me once when heating goes above 25")
        finally:
            await engine.stop()

        assert old.id in provider.calls[0]["messages"][0]["content"]
        [created] = result.result["createdTriggers"]
        assert created["objectId"] == "house.heating.target"
        assert created["condition"] == {"operator": ">", "value": "25"}
        assert created["executeOnlyOnce"] is True
        assert result.result["deletedTriggers"] == [old.id]
        assert [r.instruction for r in await engine.list_triggers()] == ["Warn me"]


class TestClearHistoryTool:
    @pytest.mark.asyncio
    async def test_announces_then_clears_later(self, store, fake_scheduler):
        history = ChatHistoryStore(store, capacity=3)
        await history.push("a", "b")
        tool = ClearHistoryTool(history, store, fake_scheduler, delay=3)

        assert await tool.execute("forget everything") is None
        assert (await store.get("assistant.text_response")).value == prompts.DELETE_HISTORY_SUCCESS
        assert len(await history.turns()) == 1

        [call] = fake_scheduler.calls
        assert call.delay == 3
        await call.run()
        assert await history.turns() == []


class TestExternalTool:
    def make_tool(self, store, attempts=5):
        config = FunctionConfig(
            name="weather",
            description="Weather forecast",
            request_id="functions.weather.request",
            result_id="functions.weather.result",
        )
        return ExternalTool(config, store, poll_interval=0, poll_attempts=attempts)

    @pytest.mark.asyncio
    async def test_returns_new_result(self, store):
        await store.set("functions.weather.result", "stale")

        async def responder(state):
            assert state.ack is False
            await asyncio.sleep(0.01)
            await store.set("functions.weather.result", f"Sunny in {state.value}")

        store.subscribe("functions.weather.request", responder)
        tool = self.make_tool(store)

        result = await tool.execute("Berlin")

        assert result.tool == "weather"
        assert result.notice_to_assistant == prompts.FUNCTION_EXECUTED
        assert result.result == "Sunny in Berlin"

    @pytest.mark.asyncio
    async def test_times_out_with_sentinel(self, store):
        await store.set("functions.weather.result", "stale")
        tool = self.make_tool(store, attempts=3)

        with capture_logs() as logs:
            result = await tool.call("Berlin")

        assert result == prompts.FUNCTION_TIMEOUT
        assert (await store.get("functions.weather.request")).value == "Berlin"
        assert any(e["event"] == "external_tool_timeout" for e in logs)


class _BrokenTool(Tool):
    @property
    def name(self) -> str:
        return "broken"

    @property
    def description(self) -> str:
        return "Always fails"

    async def execute(self, instruction):
        raise RuntimeError("kaputt")


class TestToolDispatcher:
    @pytest.mark.asyncio
    async def test_unknown_tool_is_not_implemented(self):
        dispatcher = ToolDispatcher()
        result = await dispatcher.dispatch("nope", "do it")
        assert result.notice_to_assistant == prompts.FUNCTION_NOT_IMPLEMENTED
        assert result.result is None
        assert result.to_payload()["prompt"] == "do it"

    @pytest.mark.asyncio
    async def test_tool_failure_is_absorbed(self):
        dispatcher = ToolDispatcher()
        dispatcher.register(_BrokenTool())
        with capture_logs() as logs:
            assert await dispatcher.dispatch("broken", "x") is None
        assert any(e["event"] == "tool_execution_error" for e in logs)

    def test_catalog(self):
        dispatcher = ToolDispatcher()
        dispatcher.register(_BrokenTool())
        assert dispatcher.catalog() == [{"name": "broken", "description": "Always fails"}]
        assert dispatcher.names == ["broken"]
