"""End-to-end tests for the application wiring."""

import pytest
import pytest_asyncio

from ai_assistant.app import CLEAR_MESSAGES_ID, TEXT_REQUEST_ID, TEXT_RESPONSE_ID, AssistantApp
from ai_assistant.config import (
    AppConfig,
    AssistantConfig,
    FunctionConfig,
    ModelConfig,
    StorageConfig,
)
from ai_assistant.errors import ValidationError
from tests.fakes import FakeProvider, reply


DEFAULT_MODELS = [ModelConfig(name="claude-test"), ModelConfig(name="claude-backup")]


def make_config(tmp_path, model="claude-test", models=None):
    return AppConfig(
        assistant=AssistantConfig(model=model),
        models=models if models is not None else DEFAULT_MODELS,
        available_functions=[FunctionConfig(name="weather", request_id="f.req", result_id="f.res")],
        storage=StorageConfig(db_path=str(tmp_path / "app.db")),
    )


@pytest_asyncio.fixture
async def app(tmp_path):
    provider = FakeProvider(default=reply(userResponse="Hi from the assistant"))
    app = AssistantApp(make_config(tmp_path), provider=provider)
    await app.start()
    yield app
    await app.stop()


class TestAssistantApp:
    @pytest.mark.asyncio
    async def test_start_creates_objects_and_tools(self, app):
        assert await app.store.get_object(TEXT_REQUEST_ID) is not None
        assert await app.store.get_object("models.claude-test.statistics.tokens_input") is not None
        assert await app.store.get_object("models.claude-backup.statistics.tokens_input") is not None
        assert set(app.dispatcher.names) == {"states", "scheduler", "trigger", "deleteHistory", "weather"}
        health = await app.service_manager.health_check_all()
        assert health == {"scheduler": True, "triggers": True}

    @pytest.mark.asyncio
    async def test_text_request_starts_a_turn(self, app):
        await app.store.set(TEXT_REQUEST_ID, "hello", ack=False)
        await app.tasks.join()

        assert (await app.store.get(TEXT_RESPONSE_ID)).value == "Hi from the assistant"
        assert len(await app.history.turns()) == 1

    @pytest.mark.asyncio
    async def test_acknowledged_request_is_ignored(self, app):
        await app.store.set(TEXT_REQUEST_ID, "hello", ack=True)
        await app.tasks.join()
        assert app.provider.calls == []

    @pytest.mark.asyncio
    async def test_clear_messages(self, app):
        await app.history.push("a", "b")
        await app.store.set(CLEAR_MESSAGES_ID, True, ack=False)
        assert await app.history.turns() == []

    @pytest.mark.asyncio
    async def test_stop_cancels_timers(self, tmp_path):
        app = AssistantApp(make_config(tmp_path), provider=FakeProvider())
        await app.start()
        await app.scheduler.create_cronjob("0 7 * * *", "Morning")
        app.scheduler.add_timeout(600, "Later")

        await app.stop()

        assert app.scheduler.pending_job_ids() == []
        assert app.store.subscription_patterns() == []


class TestModelValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("model", "models"),
        [
            ("", None),
            ("claude-unknown", None),
            ("claude-test", [ModelConfig(name="claude-test", active=False)]),
        ],
    )
    async def test_invalid_model_aborts_startup(self, tmp_path, model, models):
        app = AssistantApp(make_config(tmp_path, model=model, models=models), provider=FakeProvider())
        with pytest.raises(ValidationError):
            await app.start()
        await app.stop()

    def test_missing_anthropic_section(self, tmp_path):
        with pytest.raises(ValueError):
            AssistantApp(make_config(tmp_path))
