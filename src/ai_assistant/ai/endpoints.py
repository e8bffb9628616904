"""Catalog of endpoints the assistant may read and write."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ai_assistant.config import EndpointConfig
from ai_assistant.log import get_logger
from ai_assistant.storage.value_store import ValueStore

logger = get_logger(__name__)


def format_timestamp(ts: Optional[float]) -> str:
    if not ts:
        return ""
    return datetime.fromtimestamp(ts).strftime("%d.%m.%Y, %H:%M:%S")


class EndpointCatalog:
    """Builds the model-facing description of configured endpoints."""

    def __init__(self, store: ValueStore, endpoints: list[EndpointConfig]):
        self._store = store
        self._endpoints = [e for e in endpoints if e.active]

    async def structure(self) -> dict[str, list[dict[str, Any]]]:
        """Endpoints grouped by their ``sort`` category."""
        categories: dict[str, list[dict[str, Any]]] = {e.sort: [] for e in self._endpoints}
        for endpoint in self._endpoints:
            obj = await self._store.get_object(endpoint.obj_id)
            if obj is None or obj.type != "state":
                logger.debug("endpoint_skipped", obj_id=endpoint.obj_id)
                continue
            common = obj.common
            entry: dict[str, Any] = {
                "name": endpoint.name,
                "id": endpoint.obj_id,
                "type": common.get("type"),
                "write": common.get("write", True),
                "read": common.get("read", True),
            }
            if common.get("type") == "number":
                unit = common.get("unit")
                if unit and str(unit).strip():
                    entry["unit"] = unit
                for key in ("max", "min", "step"):
                    if common.get(key) is not None:
                        entry[key] = common[key]
            if common.get("states") is not None:
                entry["allowed_states"] = common["states"]
            categories[endpoint.sort].append(entry)
        return categories

    async def structure_json(self) -> str:
        if not self._endpoints:
            logger.warning("no_available_endpoints")
            return "null"
        return json.dumps(await self.structure(), ensure_ascii=False)

    async def describe(self, name: str, state_id: str) -> Optional[dict[str, Any]]:
        """Current value of one endpoint with unit, type and formatted timestamps."""
        state = await self._store.get(state_id)
        if state is None:
            logger.debug("endpoint_state_missing", state_id=state_id)
            return None
        obj = await self._store.get_object(state_id)
        return {
            "name": name,
            "id": state_id,
            "value": state.value,
            "type": obj.value_type if obj else None,
            "unit": obj.unit if obj else "",
            "last_change": format_timestamp(state.lc),
            "last_update": format_timestamp(state.ts),
        }
