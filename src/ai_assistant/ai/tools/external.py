"""Tools implemented outside the process, reached through two value slots."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.tools.base import Tool, ToolResult
from ai_assistant.config import FunctionConfig
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

logger = get_logger(__name__)


class ExternalTool(Tool):
    """Writes the instruction to ``request_id`` and waits for ``result_id`` to update.

    A result counts once its timestamp is newer than the one observed
    before the request was written. After ``poll_attempts`` polls without
    a newer result the caller gets ``prompts.FUNCTION_TIMEOUT``.
    """

    def __init__(
        self,
        config: FunctionConfig,
        store: ValueStore,
        poll_interval: float = 1.0,
        poll_attempts: int = 60,
    ):
        self._config = config
        self._store = store
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def description(self) -> str:
        return self._config.description

    async def execute(self, instruction: str) -> Optional[ToolResult]:
        result = await self.call(instruction)
        return ToolResult(
            tool=self.name,
            notice_to_assistant=prompts.FUNCTION_EXECUTED,
            result=result,
        )

    async def call(self, instruction: str) -> Any:
        before = await self._store.get(self._config.result_id)
        last_ts = before.ts if before is not None else 0.0
        logger.info("external_tool_request", tool=self.name, request_id=self._config.request_id)
        await self._store.set(self._config.request_id, instruction, ack=False)

        for attempt in range(self._poll_attempts):
            await asyncio.sleep(self._poll_interval)
            state = await self._store.get(self._config.result_id)
            if state is not None and state.ts > last_ts:
                logger.info("external_tool_result", tool=self.name, attempts=attempt + 1)
                return state.value

        logger.warning("external_tool_timeout", tool=self.name, attempts=self._poll_attempts)
        return prompts.FUNCTION_TIMEOUT
