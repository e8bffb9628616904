"""Tests for the SQLite value store and its subscriptions."""

import asyncio

import pytest
from structlog.testing import capture_logs


class TestSqliteValueStore:
    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set("house.light", True, ack=False)
        state = await store.get("house.light")
        assert state.value is True
        assert state.ack is False
        assert state.ts > 0

    @pytest.mark.asyncio
    async def test_missing_value(self, store):
        assert await store.get("does.not.exist") is None

    @pytest.mark.asyncio
    async def test_last_change_kept_for_same_value(self, store):
        first = await store.set("sensor.temp", 21)
        await asyncio.sleep(0.01)
        second = await store.set("sensor.temp", 21)
        assert second.lc == first.lc
        assert second.ts > first.ts

        await asyncio.sleep(0.01)
        third = await store.set("sensor.temp", 22)
        assert third.lc > first.lc

    @pytest.mark.asyncio
    async def test_list_ids_by_prefix(self, store):
        for state_id in ("triggers.b", "triggers.a", "triggersx.c", "cronjobs.a"):
            await store.set(state_id, "{}")
        assert await store.list_ids("triggers.") == ["triggers.a", "triggers.b"]

    @pytest.mark.asyncio
    async def test_delete_removes_value_and_object(self, store):
        await store.set_object("x.y", {"type": "string"})
        await store.set("x.y", "v")
        assert await store.delete("x.y") is True
        assert await store.get("x.y") is None
        assert await store.get_object("x.y") is None
        assert await store.delete("x.y") is False

    @pytest.mark.asyncio
    async def test_set_object_not_exists_keeps_existing(self, store):
        await store.set_object("x.y", {"type": "number", "unit": "°C"})
        await store.set_object_not_exists("x.y", {"type": "string"})
        obj = await store.get_object("x.y")
        assert obj.value_type == "number"
        assert obj.unit == "°C"


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_exact_and_glob_patterns(self, store):
        seen = []

        async def on_change(state):
            seen.append(state.id)

        store.subscribe("assistant.*", on_change)
        store.subscribe("house.light", on_change)

        await store.set("assistant.text_request", "hi")
        await store.set("house.light", True)
        await store.set("house.heater", True)

        assert seen == ["assistant.text_request", "house.light"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store):
        seen = []

        async def on_change(state):
            seen.append(state.value)

        token = store.subscribe("a", on_change)
        await store.set("a", 1)
        store.unsubscribe(token)
        await store.set("a", 2)

        assert seen == [1]
        assert store.subscription_patterns() == []

    @pytest.mark.asyncio
    async def test_callback_errors_are_logged(self, store):
        async def broken(state):
            raise RuntimeError("boom")

        store.subscribe("a", broken)
        with capture_logs() as logs:
            await store.set("a", 1)

        assert (await store.get("a")).value == 1
        assert any(e["event"] == "value_store_callback_error" for e in logs)
