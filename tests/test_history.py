"""Tests for the bounded chat history."""

import asyncio
import json

import pytest

from ai_assistant.ai.history import CACHED_FIELDS, MESSAGES_ID, ChatHistoryStore


class TestChatHistoryStore:
    @pytest.mark.asyncio
    async def test_capacity_keeps_most_recent_turns(self, store):
        history = ChatHistoryStore(store, capacity=3)
        for i in range(4):
            await history.push(f"user {i}", f"assistant {i}")

        turns = await history.turns()
        assert [t.user for t in turns] == ["user 1", "user 2", "user 3"]
        assert [t.assistant for t in turns] == ["assistant 1", "assistant 2", "assistant 3"]

    @pytest.mark.asyncio
    async def test_concurrent_pushes_keep_every_turn(self, store):
        history = ChatHistoryStore(store, capacity=10)

        await asyncio.gather(*(history.push(f"user {i}", f"assistant {i}") for i in range(5)))

        turns = await history.turns()
        assert [t.user for t in turns] == [f"user {i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_build_messages_alternates_roles(self, store):
        history = ChatHistoryStore(store, capacity=5)
        await history.push("hello", "hi there", model="m", tokens_input=3, tokens_output=4)

        assert await history.build_messages() == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi there"},
        ]
        turn = (await history.turns())[0]
        assert (turn.model, turn.tokens_input, turn.tokens_output) == ("m", 3, 4)
        assert turn.timestamp > 0

    @pytest.mark.asyncio
    async def test_disabled_history_stores_nothing(self, store):
        history = ChatHistoryStore(store, capacity=0)
        assert await history.push("a", "b") is False
        assert await history.build_messages() == []
        assert await store.get(MESSAGES_ID) is None

    @pytest.mark.asyncio
    async def test_clear_resets_history_and_cached_fields(self, store):
        history = ChatHistoryStore(store, capacity=3)
        await history.push("a", "b")
        await store.set("assistant.text_response", "last answer")
        await store.set("assistant.response.error", "boom")

        await history.clear()

        assert await history.turns() == []
        for state_id in CACHED_FIELDS:
            assert (await store.get(state_id)).value is None

    @pytest.mark.asyncio
    async def test_reads_slightly_corrupted_history(self, store):
        history = ChatHistoryStore(store, capacity=3)
        await store.set(
            MESSAGES_ID,
            '{"messages": [{"user": "a", "assistant": "b", "timestamp": 1,},]}',
        )
        turns = await history.turns()
        assert len(turns) == 1
        assert turns[0].user == "a"

    @pytest.mark.asyncio
    async def test_unreadable_history_counts_as_empty(self, store):
        history = ChatHistoryStore(store, capacity=3)
        await store.set(MESSAGES_ID, "[]")
        assert await history.turns() == []

        await history.push("new", "turn")
        data = json.loads((await store.get(MESSAGES_ID)).value)
        assert [m["user"] for m in data["messages"]] == ["new"]
