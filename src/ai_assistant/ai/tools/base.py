"""Tool interface and result type for model-invoked functions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from ai_assistant.ai.json_utils import parse_json_object, strip_line_breaks
from ai_assistant.errors import ParseError, ValidationError
from ai_assistant.log import get_logger

if TYPE_CHECKING:
    from ai_assistant.ai.requester import ModelRequester

logger = get_logger(__name__)


@dataclass
class ToolResult:
    """Outcome handed back to the model as a function-response turn."""

    tool: str
    notice_to_assistant: Optional[str]
    result: Any
    reasoning: Optional[str] = None
    type: str = "toolResponse"
    prompt: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Serializable form without the tool's private reasoning."""
        payload: dict[str, Any] = {
            "type": self.type,
            "tool": self.tool,
            "noticeToAssistant": self.notice_to_assistant,
            "result": self.result,
        }
        if self.prompt is not None:
            payload["prompt"] = self.prompt
        return payload


class Tool(ABC):
    """Base class for all model-callable functions."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Function-call name the model uses."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @abstractmethod
    async def execute(self, instruction: str) -> Optional[ToolResult]:
        """Run the tool. None means there is nothing to feed back to the model."""
        ...

    def to_catalog_entry(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description}


class ModelTool(Tool):
    """A tool that asks the model to translate an instruction into a JSON plan."""

    temperature = 0.2
    max_tokens = 1000
    label = "Tool"

    def __init__(self, requester: ModelRequester):
        self._requester = requester

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        ...

    @abstractmethod
    async def build_message(self, instruction: str) -> str:
        ...

    @abstractmethod
    async def handle(self, data: dict[str, Any]) -> ToolResult:
        ...

    async def execute(self, instruction: str) -> Optional[ToolResult]:
        logger.debug("tool_request", tool=self.label, instruction=instruction)
        try:
            response = await self._requester.request(
                [{"role": "user", "content": await self.build_message(instruction)}],
                self.system_prompt,
                self.max_tokens,
                self.temperature,
            )
        except ValidationError as e:
            logger.error("tool_request_invalid", tool=self.label, error=str(e))
            return None
        if response.error or not response.text:
            logger.error("tool_request_failed", tool=self.label, error=response.error)
            return None
        try:
            data = parse_json_object(strip_line_breaks(response.text))
        except ParseError as e:
            logger.error("tool_response_unparsable", tool=self.label, error=str(e))
            return None
        return await self.handle(data)


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []
