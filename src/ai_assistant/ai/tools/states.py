"""States tool: read and write endpoint values."""

from __future__ import annotations

from typing import Any

from ai_assistant.ai import prompts
from ai_assistant.ai.endpoints import EndpointCatalog
from ai_assistant.ai.requester import ModelRequester
from ai_assistant.ai.tools.base import ModelTool, ToolResult, as_list
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

logger = get_logger(__name__)


class StatesTool(ModelTool):
    """Lets the model pick datapoints, writes requested values and reports current ones."""

    label = "StatesTool"

    def __init__(self, requester: ModelRequester, store: ValueStore, catalog: EndpointCatalog):
        super().__init__(requester)
        self._store = store
        self._catalog = catalog

    @property
    def name(self) -> str:
        return "states"

    @property
    def description(self) -> str:
        return (
            "Read or change the current value of devices and datapoints. "
            "Describe in plain text which devices to read or which values to set."
        )

    @property
    def system_prompt(self) -> str:
        return prompts.tool_system_prompt(prompts.STATES_PURPOSE, prompts.STATES_RESPONSE_FORMAT)

    async def build_message(self, instruction: str) -> str:
        return prompts.states_tool_message(instruction, await self._catalog.structure_json())

    async def handle(self, data: dict[str, Any]) -> ToolResult:
        set_states = await self.set_states(as_list(data.get("set-states")))
        get_states = await self.get_states(as_list(data.get("get-states")))
        return ToolResult(
            tool=self.label,
            reasoning=data.get("reasoning"),
            notice_to_assistant=data.get("noticeToAssistant"),
            result={"setStates": set_states, "getStates": get_states},
        )

    async def set_states(self, datapoints: list[Any]) -> list[dict[str, Any]]:
        states = []
        for datapoint in datapoints:
            if not isinstance(datapoint, dict) or not datapoint.get("id"):
                logger.warning("states_tool_invalid_datapoint", datapoint=datapoint)
                continue
            state_id = str(datapoint["id"])
            logger.debug("states_tool_set", state_id=state_id, value=datapoint.get("value"))
            # Unacknowledged: a command for whoever owns the endpoint.
            await self._store.set(state_id, datapoint.get("value"), ack=False)
            described = await self._catalog.describe(str(datapoint.get("name", "")), state_id)
            if described is not None:
                states.append(described)
        return states

    async def get_states(self, datapoints: list[Any]) -> list[dict[str, Any]]:
        states = []
        for datapoint in datapoints:
            if not isinstance(datapoint, dict) or not datapoint.get("id"):
                logger.warning("states_tool_invalid_datapoint", datapoint=datapoint)
                continue
            described = await self._catalog.describe(str(datapoint.get("name", "")), str(datapoint["id"]))
            if described is not None:
                states.append(described)
        return states
