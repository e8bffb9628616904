"""History-clear tool."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.history import ChatHistoryStore
from ai_assistant.ai.tools.base import Tool, ToolResult
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

if TYPE_CHECKING:
    from ai_assistant.services.scheduler import TaskScheduler

logger = get_logger(__name__)


class ClearHistoryTool(Tool):
    """Announces the reset, then clears the history after a short delay.

    The delay keeps the announcement visible instead of being wiped by the
    clear that resets ``assistant.text_response``.
    """

    def __init__(self, history: ChatHistoryStore, store: ValueStore, scheduler: TaskScheduler, delay: float):
        self._history = history
        self._store = store
        self._scheduler = scheduler
        self._delay = delay

    @property
    def name(self) -> str:
        return "deleteHistory"

    @property
    def description(self) -> str:
        return "Delete the whole conversation history when the user asks you to forget the conversation."

    async def execute(self, instruction: str) -> Optional[ToolResult]:
        await self._store.set("assistant.text_response", prompts.DELETE_HISTORY_SUCCESS)
        self._scheduler.call_later(self._delay, self._history.clear)
        logger.info("history_clear_scheduled", delay=self._delay)
        return None
