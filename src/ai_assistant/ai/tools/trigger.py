"""Trigger tool: reactive rules on datapoint changes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.endpoints import EndpointCatalog
from ai_assistant.ai.requester import ModelRequester
from ai_assistant.ai.tools.base import ModelTool, ToolResult, as_list
from ai_assistant.errors import InvalidOperatorError, ValidationError
from ai_assistant.log import get_logger
from ai_assistant.storage.models import TriggerCondition

if TYPE_CHECKING:
    from ai_assistant.services.triggers import ConditionTriggerEngine

logger = get_logger(__name__)


def _condition(raw: Any) -> Optional[TriggerCondition]:
    if not isinstance(raw, dict) or not raw.get("operator") or raw.get("value") in (None, ""):
        return None
    value = raw["value"]
    if isinstance(value, bool):
        value = "true" if value else "false"
    return TriggerCondition(operator=str(raw["operator"]), value=str(value))


class TriggerTool(ModelTool):
    label = "TriggerTool"

    def __init__(self, requester: ModelRequester, engine: ConditionTriggerEngine, catalog: EndpointCatalog):
        super().__init__(requester)
        self._engine = engine
        self._catalog = catalog

    @property
    def name(self) -> str:
        return "trigger"

    @property
    def description(self) -> str:
        return (
            "Create triggers that wake you up with an instruction when a datapoint "
            "changes or meets a condition, or delete existing triggers."
        )

    @property
    def system_prompt(self) -> str:
        return prompts.tool_system_prompt(prompts.TRIGGER_PURPOSE, prompts.TRIGGER_RESPONSE_FORMAT)

    async def build_message(self, instruction: str) -> str:
        triggers = [{"id": rule.id, **rule.to_record()} for rule in await self._engine.list_triggers()]
        return prompts.trigger_tool_message(instruction, triggers, await self._catalog.structure_json())

    async def handle(self, data: dict[str, Any]) -> ToolResult:
        created = []
        for item in as_list(data.get("createTriggers")):
            if not isinstance(item, dict):
                continue
            try:
                rule = await self._engine.create_trigger(
                    object_id=str(item.get("objectId") or ""),
                    instruction=str(item.get("instruction") or ""),
                    condition=_condition(item.get("condition")),
                    only_on_change=bool(item.get("onlyOnStateValueChange")),
                    fire_once=bool(item.get("executeOnlyOnce")),
                )
            except InvalidOperatorError as e:
                logger.warning("trigger_tool_invalid_operator", operator=e.operator, item=item)
                continue
            except ValidationError as e:
                logger.warning("trigger_tool_invalid_trigger", item=item, error=str(e))
                continue
            created.append({"id": rule.id, **rule.to_record()})

        deleted = []
        for rule_id in as_list(data.get("deleteTriggers")):
            if isinstance(rule_id, str) and await self._engine.delete_trigger(rule_id):
                deleted.append(rule_id)

        return ToolResult(
            tool=self.label,
            reasoning=data.get("reasoning"),
            notice_to_assistant=data.get("noticeToAssistant"),
            result={"createdTriggers": created, "deletedTriggers": deleted},
        )
