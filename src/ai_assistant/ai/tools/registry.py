"""Dispatch of model function calls to tools."""

from __future__ import annotations

from typing import Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.tools.base import Tool, ToolResult
from ai_assistant.log import get_logger

logger = get_logger(__name__)


class ToolDispatcher:
    """Routes a function-call name to a registered tool."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("tool_replaced", tool=tool.name)
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool=tool.name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def catalog(self) -> list[dict[str, str]]:
        """Name and description of every tool, for the system prompt."""
        return [tool.to_catalog_entry() for tool in self._tools.values()]

    async def dispatch(self, name: str, instruction: str) -> Optional[ToolResult]:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool_not_found", tool=name)
            return ToolResult(
                tool=name,
                notice_to_assistant=prompts.FUNCTION_NOT_IMPLEMENTED,
                result=None,
                prompt=instruction,
            )
        logger.info("tool_dispatch", tool=name)
        try:
            return await tool.execute(instruction)
        except Exception as e:
            logger.error("tool_execution_error", tool=name, error=str(e))
            return None
