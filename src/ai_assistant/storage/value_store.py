"""Persisted key/value store for endpoint values with change notifications."""

from __future__ import annotations

import fnmatch
import itertools
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ai_assistant.log import get_logger
from ai_assistant.storage.database import Database
from ai_assistant.storage.models import StateObject, StateValue

logger = get_logger(__name__)

ChangeCallback = Callable[[StateValue], Awaitable[None]]


@dataclass(frozen=True)
class _Subscription:
    token: int
    pattern: str
    callback: ChangeCallback


class ValueStore(ABC):
    """Named values with last-change/last-update timestamps and pub/sub.

    Subscriptions take an exact id or a glob pattern (``assistant.*``).
    Callbacks run after the write is committed, in subscription order.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[int, _Subscription] = {}
        self._tokens = itertools.count(1)

    @abstractmethod
    async def get(self, state_id: str) -> StateValue | None:
        ...

    @abstractmethod
    async def _write(self, state_id: str, value: Any, ack: bool) -> StateValue:
        ...

    @abstractmethod
    async def get_object(self, state_id: str) -> StateObject | None:
        ...

    @abstractmethod
    async def set_object(self, state_id: str, common: dict[str, Any], obj_type: str = "state") -> None:
        ...

    @abstractmethod
    async def delete(self, state_id: str) -> bool:
        """Remove a value and its object metadata. Returns True if anything existed."""
        ...

    @abstractmethod
    async def list_ids(self, prefix: str) -> list[str]:
        ...

    async def set(self, state_id: str, value: Any, ack: bool = True) -> StateValue:
        """Write a value and notify matching subscribers."""
        state = await self._write(state_id, value, ack)
        await self._notify(state)
        return state

    async def set_object_not_exists(
        self, state_id: str, common: dict[str, Any], obj_type: str = "state"
    ) -> None:
        if await self.get_object(state_id) is None:
            await self.set_object(state_id, common, obj_type)

    def subscribe(self, pattern: str, callback: ChangeCallback) -> int:
        token = next(self._tokens)
        self._subscriptions[token] = _Subscription(token, pattern, callback)
        logger.debug("value_store_subscribed", pattern=pattern, token=token)
        return token

    def unsubscribe(self, token: int) -> None:
        sub = self._subscriptions.pop(token, None)
        if sub:
            logger.debug("value_store_unsubscribed", pattern=sub.pattern, token=token)

    def subscription_patterns(self) -> list[str]:
        return [s.pattern for s in self._subscriptions.values()]

    async def _notify(self, state: StateValue) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.token not in self._subscriptions:
                continue
            if sub.pattern != state.id and not fnmatch.fnmatchcase(state.id, sub.pattern):
                continue
            try:
                await sub.callback(state)
            except Exception as e:
                logger.error(
                    "value_store_callback_error",
                    state_id=state.id,
                    pattern=sub.pattern,
                    error=str(e),
                )


class SqliteValueStore(ValueStore):
    """Value store persisted in the ``states`` and ``objects`` tables."""

    def __init__(self, db: Database):
        super().__init__()
        self._db = db

    async def get(self, state_id: str) -> StateValue | None:
        cursor = await self._db.conn.execute(
            "SELECT id, value_json, ack, ts, lc FROM states WHERE id = ?", (state_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_state(row)

    async def _write(self, state_id: str, value: Any, ack: bool) -> StateValue:
        now = time.time()
        previous = await self.get(state_id)
        lc = now
        if previous is not None and previous.value == value:
            lc = previous.lc
        await self._db.conn.execute(
            """INSERT INTO states (id, value_json, ack, ts, lc)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   value_json = excluded.value_json,
                   ack = excluded.ack,
                   ts = excluded.ts,
                   lc = excluded.lc""",
            (state_id, json.dumps(value), int(ack), now, lc),
        )
        await self._db.conn.commit()
        return StateValue(id=state_id, value=value, ack=ack, ts=now, lc=lc)

    async def get_object(self, state_id: str) -> StateObject | None:
        cursor = await self._db.conn.execute(
            "SELECT id, type, common_json FROM objects WHERE id = ?", (state_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return StateObject(id=row["id"], type=row["type"], common=json.loads(row["common_json"]))

    async def set_object(self, state_id: str, common: dict[str, Any], obj_type: str = "state") -> None:
        await self._db.conn.execute(
            """INSERT INTO objects (id, type, common_json) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   type = excluded.type,
                   common_json = excluded.common_json""",
            (state_id, obj_type, json.dumps(common)),
        )
        await self._db.conn.commit()

    async def delete(self, state_id: str) -> bool:
        cursor = await self._db.conn.execute("DELETE FROM states WHERE id = ?", (state_id,))
        deleted = cursor.rowcount
        cursor = await self._db.conn.execute("DELETE FROM objects WHERE id = ?", (state_id,))
        deleted += cursor.rowcount
        await self._db.conn.commit()
        logger.debug("value_store_deleted", state_id=state_id, found=deleted > 0)
        return deleted > 0

    async def list_ids(self, prefix: str) -> list[str]:
        cursor = await self._db.conn.execute(
            "SELECT id FROM states WHERE substr(id, 1, ?) = ? ORDER BY id",
            (len(prefix), prefix),
        )
        rows = await cursor.fetchall()
        return [row["id"] for row in rows]

    @staticmethod
    def _row_to_state(row) -> StateValue:
        raw = row["value_json"]
        return StateValue(
            id=row["id"],
            value=json.loads(raw) if raw is not None else None,
            ack=bool(row["ack"]),
            ts=row["ts"],
            lc=row["lc"],
        )
