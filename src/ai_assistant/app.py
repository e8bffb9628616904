"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Any, Optional

from ai_assistant.ai.endpoints import EndpointCatalog
from ai_assistant.ai.history import MESSAGES_ID, ChatHistoryStore
from ai_assistant.ai.orchestrator import RequestOrchestrator
from ai_assistant.ai.provider import AnthropicProvider, ModelProvider
from ai_assistant.ai.requester import ModelRequester, to_alphanumeric
from ai_assistant.ai.tools.external import ExternalTool
from ai_assistant.ai.tools.history import ClearHistoryTool
from ai_assistant.ai.tools.registry import ToolDispatcher
from ai_assistant.ai.tools.scheduler import SchedulerTool
from ai_assistant.ai.tools.states import StatesTool
from ai_assistant.ai.tools.trigger import TriggerTool
from ai_assistant.config import AppConfig
from ai_assistant.core.tasks import BackgroundTasks
from ai_assistant.errors import ValidationError
from ai_assistant.log import get_logger
from ai_assistant.services.scheduler import TaskScheduler
from ai_assistant.services.service_manager import ServiceManager
from ai_assistant.services.triggers import ConditionTriggerEngine
from ai_assistant.storage.database import Database
from ai_assistant.storage.models import StateValue
from ai_assistant.storage.value_store import SqliteValueStore, ValueStore

logger = get_logger(__name__)

TEXT_REQUEST_ID = "assistant.text_request"
TEXT_RESPONSE_ID = "assistant.text_response"
CLEAR_MESSAGES_ID = "assistant.statistics.clear_messages"

_STRING = {"type": "string", "role": "text", "read": True, "write": False}
_NUMBER = {"type": "number", "role": "value", "read": True, "write": False}

ASSISTANT_OBJECTS: dict[str, dict[str, Any]] = {
    TEXT_REQUEST_ID: {"name": "Text request to the assistant", "type": "string", "role": "text", "read": True, "write": True},
    TEXT_RESPONSE_ID: {**_STRING, "name": "Text response from the assistant"},
    "assistant.request.state": {**_STRING, "name": "State of the current request"},
    "assistant.request.body": {**_STRING, "name": "Body of the last request"},
    "assistant.response.raw": {**_STRING, "name": "Raw response of the last request"},
    "assistant.response.error": {**_STRING, "name": "Error of the last request"},
    MESSAGES_ID: {**_STRING, "name": "Conversation history"},
    CLEAR_MESSAGES_ID: {"name": "Clear conversation history", "type": "boolean", "role": "button", "read": False, "write": True},
    "assistant.statistics.tokens_input": {**_NUMBER, "name": "Input tokens used"},
    "assistant.statistics.tokens_output": {**_NUMBER, "name": "Output tokens used"},
    "assistant.statistics.requests_count": {**_NUMBER, "name": "Number of requests"},
    "assistant.statistics.last_request": {**_STRING, "name": "Time of the last request"},
}

MODEL_OBJECTS: dict[str, dict[str, Any]] = {
    "request.state": {**_STRING, "name": "State of the current request"},
    "request.body": {**_STRING, "name": "Body of the last request"},
    "response.raw": {**_STRING, "name": "Raw response of the last request"},
    "response.error": {**_STRING, "name": "Error of the last request"},
    "statistics.tokens_input": {**_NUMBER, "name": "Input tokens used"},
    "statistics.tokens_output": {**_NUMBER, "name": "Output tokens used"},
    "statistics.requests_count": {**_NUMBER, "name": "Number of requests"},
    "statistics.last_request": {**_STRING, "name": "Time of the last request"},
}


class AssistantApp:
    """Top-level application: value store, services, tools and the orchestrator."""

    def __init__(self, config: AppConfig, provider: Optional[ModelProvider] = None):
        self.config = config
        assistant = config.assistant
        self.db = Database(config.storage.db_path)
        self.store: ValueStore = SqliteValueStore(self.db)
        self.tasks = BackgroundTasks()
        self.provider = provider or self._create_provider()
        self.requester = ModelRequester(self.provider, self.store, assistant.model)
        self.history = ChatHistoryStore(self.store, assistant.chat_history)
        self.catalog = EndpointCatalog(self.store, config.available_endpoints)
        self.scheduler = TaskScheduler(config.scheduler, self.store)
        self.triggers = ConditionTriggerEngine(self.store)
        self.service_manager = ServiceManager(self.scheduler, self.triggers)
        self.dispatcher = self._create_dispatcher()
        self.orchestrator = RequestOrchestrator(
            config=assistant,
            requester=self.requester,
            history=self.history,
            dispatcher=self.dispatcher,
            store=self.store,
            scheduler=self.scheduler,
        )
        self._subscription: Optional[int] = None

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Model configuration
        self.validate_model()
        await self.create_objects()

        # 3. Inject app context so scheduled and triggered fires reach the orchestrator
        self.scheduler.set_app_context(self.orchestrator)
        self.triggers.set_app_context(self.orchestrator, self.tasks)

        # 4. Services (restores persisted cron jobs and triggers)
        await self.service_manager.start_all()

        # 5. Incoming requests
        self._subscription = self.store.subscribe("assistant.*", self.on_assistant_change)
        logger.info(
            "ai_assistant_started",
            model=self.config.assistant.model,
            tools=self.dispatcher.names,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        if self._subscription is not None:
            self.store.unsubscribe(self._subscription)
            self._subscription = None
        await self.service_manager.stop_all()
        await self.tasks.cancel_all()
        await self.db.close()
        logger.info("ai_assistant_stopped")

    def validate_model(self) -> None:
        model = self.config.assistant.model
        if not model:
            raise ValidationError("No assistant model configured")
        if self.config.find_model(model) is None:
            raise ValidationError(f"Model {model!r} is not configured or not active")

    async def create_objects(self) -> None:
        for state_id, common in ASSISTANT_OBJECTS.items():
            await self.store.set_object_not_exists(state_id, common)
        for model in self.config.models:
            prefix = f"models.{to_alphanumeric(model.name)}"
            for suffix, common in MODEL_OBJECTS.items():
                await self.store.set_object_not_exists(f"{prefix}.{suffix}", common)

    async def on_assistant_change(self, state: StateValue) -> None:
        """React to commands written to the assistant branch (unacknowledged writes)."""
        if state.ack:
            return
        if state.id == TEXT_REQUEST_ID and state.value:
            logger.info("text_request_received")
            self.tasks.spawn(self.orchestrator.request(str(state.value)), name="text_request")
        elif state.id == CLEAR_MESSAGES_ID and state.value:
            await self.history.clear()

    def _create_provider(self) -> ModelProvider:
        model = self.config.find_model(self.config.assistant.model)
        provider = model.provider if model else "anthropic"
        match provider:
            case "anthropic":
                if not self.config.anthropic:
                    raise ValueError(
                        "The assistant model uses the 'anthropic' provider but "
                        "no 'anthropic' section in config"
                    )
                return AnthropicProvider(self.config.anthropic)
            case _:
                raise ValueError(f"Unknown model provider: {provider}")

    def _create_dispatcher(self) -> ToolDispatcher:
        dispatcher = ToolDispatcher()
        dispatcher.register(StatesTool(self.requester, self.store, self.catalog))
        dispatcher.register(SchedulerTool(self.requester, self.scheduler))
        dispatcher.register(TriggerTool(self.requester, self.triggers, self.catalog))
        dispatcher.register(
            ClearHistoryTool(
                self.history, self.store, self.scheduler, self.config.assistant.clear_history_delay
            )
        )
        external = self.config.external_tools
        for function in self.config.available_functions:
            dispatcher.register(
                ExternalTool(function, self.store, external.poll_interval, external.poll_attempts)
            )
        return dispatcher
