"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class StateValue:
    """Current value of a named endpoint plus its change bookkeeping.

    ``ts`` is the time of the last write, ``lc`` the time the value last
    actually changed. Both are epoch seconds.
    """

    id: str
    value: Any
    ack: bool
    ts: float
    lc: float


@dataclass
class StateObject:
    """Metadata describing an endpoint (type, unit, limits, allowed states)."""

    id: str
    type: str = "state"
    common: dict[str, Any] = field(default_factory=dict)

    @property
    def value_type(self) -> Optional[str]:
        return self.common.get("type")

    @property
    def unit(self) -> str:
        return self.common.get("unit") or ""


@dataclass
class ConversationTurn:
    user: str
    assistant: str
    timestamp: int  # epoch milliseconds
    model: str = ""
    tokens_input: int = 0
    tokens_output: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "assistant": self.assistant,
            "timestamp": self.timestamp,
            "model": self.model,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationTurn:
        return cls(
            user=str(data.get("user", "")),
            assistant=str(data.get("assistant", "")),
            timestamp=int(data.get("timestamp") or 0),
            model=data.get("model") or "",
            tokens_input=int(data.get("tokens_input") or 0),
            tokens_output=int(data.get("tokens_output") or 0),
        )


@dataclass(frozen=True)
class TriggerCondition:
    operator: str
    value: str


@dataclass(frozen=True)
class TriggerRule:
    id: str
    object_id: str
    instruction: str
    condition: Optional[TriggerCondition] = None
    only_on_change: bool = False
    fire_once: bool = False

    def to_record(self) -> dict[str, Any]:
        """Persisted / model-facing representation."""
        return {
            "objectId": self.object_id,
            "condition": (
                {"operator": self.condition.operator, "value": self.condition.value}
                if self.condition
                else None
            ),
            "instruction": self.instruction,
            "onlyOnStateValueChange": self.only_on_change,
            "executeOnlyOnce": self.fire_once,
        }


@dataclass(frozen=True)
class CronJobRecord:
    id: str
    cron: str
    instruction: str

    def to_record(self) -> dict[str, Any]:
        return {"cron": self.cron, "instruction": self.instruction}
