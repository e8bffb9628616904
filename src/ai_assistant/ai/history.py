"""Bounded chat history persisted in the value store."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

from ai_assistant.ai.json_utils import repair_and_load
from ai_assistant.errors import ParseError
from ai_assistant.log import get_logger
from ai_assistant.storage.models import ConversationTurn
from ai_assistant.storage.value_store import ValueStore

logger = get_logger(__name__)

MESSAGES_ID = "assistant.statistics.messages"

# Cached request/response fields that are reset together with the history.
CACHED_FIELDS = (
    "assistant.response.raw",
    "assistant.text_response",
    "assistant.response.error",
    "assistant.request.body",
    "assistant.request.state",
)


class ChatHistoryStore:
    """FIFO of conversation turns with a fixed capacity.

    The persisted form is ``{"messages": [...]}``; it is read through the
    JSON repair pass on every access so minor corruption does not lose it.
    """

    def __init__(self, store: ValueStore, capacity: int):
        self._store = store
        self._capacity = capacity
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def enabled(self) -> bool:
        return self._capacity > 0

    async def turns(self) -> list[ConversationTurn]:
        state = await self._store.get(MESSAGES_ID)
        if state is None or state.value in (None, ""):
            logger.warning("history_not_found")
            return []
        raw = state.value
        try:
            data = raw if isinstance(raw, dict) else repair_and_load(str(raw))
        except ParseError as e:
            logger.error("history_unreadable", error=str(e))
            return []
        if not isinstance(data, dict):
            return []
        turns = []
        for item in data.get("messages") or []:
            if isinstance(item, dict):
                turns.append(ConversationTurn.from_dict(item))
        return turns

    async def build_messages(self) -> list[dict[str, Any]]:
        """Expand stored turns into alternating user/assistant chat messages."""
        if not self.enabled:
            return []
        messages: list[dict[str, Any]] = []
        for turn in await self.turns():
            messages.append({"role": "user", "content": turn.user})
            messages.append({"role": "assistant", "content": turn.assistant})
        return messages

    async def push(
        self,
        user: str,
        assistant: str,
        model: str = "",
        tokens_input: int = 0,
        tokens_output: int = 0,
    ) -> bool:
        """Append the newest turn, evicting the oldest past capacity."""
        if not self.enabled:
            logger.debug("history_disabled")
            return False
        async with self._lock:
            turns = await self.turns()
            turns.append(
                ConversationTurn(
                    user=user,
                    assistant=assistant,
                    timestamp=int(time.time() * 1000),
                    model=model,
                    tokens_input=tokens_input,
                    tokens_output=tokens_output,
                )
            )
            while len(turns) > self._capacity:
                turns.pop(0)
            await self._write(turns)
        logger.debug("history_turn_added", size=len(turns))
        return True

    async def clear(self) -> None:
        logger.info("history_cleared")
        async with self._lock:
            await self._write([])
        for state_id in CACHED_FIELDS:
            await self._store.set(state_id, None)

    async def _write(self, turns: list[ConversationTurn]) -> None:
        payload = json.dumps({"messages": [t.to_dict() for t in turns]}, ensure_ascii=False)
        await self._store.set(MESSAGES_ID, payload)
