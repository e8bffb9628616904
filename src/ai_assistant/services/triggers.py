"""Reactive rules that wake the assistant when a watched value changes."""

from __future__ import annotations

import json
import math
import operator
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.json_utils import repair_and_load
from ai_assistant.errors import InvalidOperatorError, ParseError, ValidationError
from ai_assistant.log import get_logger
from ai_assistant.services.base import Service
from ai_assistant.storage.models import StateValue, TriggerCondition, TriggerRule
from ai_assistant.storage.value_store import ValueStore

if TYPE_CHECKING:
    from ai_assistant.ai.orchestrator import RequestOrchestrator
    from ai_assistant.core.tasks import BackgroundTasks

logger = get_logger(__name__)

TRIGGER_PREFIX = "triggers."

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
    "===": operator.eq,
    "!==": operator.ne,
}

_MISSING = object()


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_bool(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return value


def coerce(value: Any, comparand: Any) -> tuple[Any, Any]:
    """Bring an observed value and a condition comparand to a common type.

    Numeric when the comparand is a finite number, boolean when it is
    ``true``/``false`` in any case, string otherwise. Observed values that
    cannot be converted become NaN (numeric) or stay as they are.
    """
    number = _as_number(comparand)
    if number is not None:
        observed = _as_number(value)
        return (math.nan if observed is None else observed), number
    if isinstance(comparand, bool) or str(comparand).strip().lower() in ("true", "false"):
        return _as_bool(value), _as_bool(str(comparand) if not isinstance(comparand, bool) else comparand)
    return ("" if value is None else str(value)), str(comparand)


def evaluate(op: str, value: Any, comparand: Any) -> bool:
    """Evaluate ``value <op> comparand`` after coercion. Raises InvalidOperatorError."""
    compare = OPERATORS.get(op)
    if compare is None:
        raise InvalidOperatorError(op)
    left, right = coerce(value, comparand)
    try:
        return bool(compare(left, right))
    except TypeError:
        return False


def rule_from_record(rule_id: str, data: dict[str, Any]) -> Optional[TriggerRule]:
    object_id = data.get("objectId")
    instruction = data.get("instruction")
    if not object_id or not instruction:
        return None
    condition = None
    raw_condition = data.get("condition")
    if isinstance(raw_condition, dict) and raw_condition.get("operator") and raw_condition.get("value") not in (None, ""):
        value = raw_condition["value"]
        if isinstance(value, bool):
            value = "true" if value else "false"
        condition = TriggerCondition(operator=str(raw_condition["operator"]), value=str(value))
    return TriggerRule(
        id=rule_id,
        object_id=str(object_id),
        instruction=str(instruction),
        condition=condition,
        only_on_change=bool(data.get("onlyOnStateValueChange")),
        fire_once=bool(data.get("executeOnlyOnce")),
    )


@dataclass(frozen=True)
class _Registry:
    rules: Mapping[str, TriggerRule] = field(default_factory=lambda: MappingProxyType({}))
    by_object: Mapping[str, tuple[TriggerRule, ...]] = field(default_factory=lambda: MappingProxyType({}))
    tokens: tuple[int, ...] = ()

    def without(self, rule_id: str) -> _Registry:
        rules = {k: v for k, v in self.rules.items() if k != rule_id}
        by_object = {
            obj: tuple(r for r in group if r.id != rule_id)
            for obj, group in self.by_object.items()
        }
        return _Registry(MappingProxyType(rules), MappingProxyType(by_object), self.tokens)


class ConditionTriggerEngine(Service):
    """Owns the trigger rules persisted under ``triggers.<id>``.

    The live registry is an immutable snapshot. Every create/delete
    persists first and then rebuilds the snapshot from the store, so the
    store stays the source of truth.
    """

    def __init__(self, store: ValueStore):
        self._store = store
        self._registry = _Registry()
        self._previous: dict[str, Any] = {}
        self._retired: set[str] = set()
        self._generation = 0
        self._orchestrator: RequestOrchestrator | None = None
        self._tasks: BackgroundTasks | None = None
        self._stopped = False

    def set_app_context(self, orchestrator: RequestOrchestrator, tasks: BackgroundTasks) -> None:
        self._orchestrator = orchestrator
        self._tasks = tasks
        logger.info("trigger_engine_app_context_set")

    @property
    def service_name(self) -> str:
        return "triggers"

    async def start(self) -> None:
        self._stopped = False
        await self.reload()

    async def stop(self) -> None:
        self._stopped = True
        for token in self._registry.tokens:
            self._store.unsubscribe(token)
        self._registry = _Registry()
        logger.info("trigger_engine_stopped")

    async def health_check(self) -> bool:
        return not self._stopped

    def active_rules(self) -> Mapping[str, TriggerRule]:
        return self._registry.rules

    async def list_triggers(self) -> list[TriggerRule]:
        """Read every valid trigger record from the value store."""
        rules = []
        for state_id in await self._store.list_ids(TRIGGER_PREFIX):
            state = await self._store.get(state_id)
            if state is None or not state.value:
                continue
            try:
                data = state.value if isinstance(state.value, dict) else repair_and_load(str(state.value))
            except ParseError as e:
                logger.error("trigger_record_unreadable", rule_id=state_id, error=str(e))
                continue
            rule = rule_from_record(state_id, data) if isinstance(data, dict) else None
            if rule is None:
                logger.warning("trigger_record_incomplete", rule_id=state_id)
                continue
            rules.append(rule)
        return rules

    async def create_trigger(
        self,
        object_id: str,
        instruction: str,
        condition: Optional[TriggerCondition] = None,
        only_on_change: bool = False,
        fire_once: bool = False,
    ) -> TriggerRule:
        """Persist a new rule and reload. Raises ValidationError / InvalidOperatorError."""
        if not object_id or not instruction:
            raise ValidationError("A trigger needs an object id and an instruction")
        if condition is not None and condition.operator not in OPERATORS:
            raise InvalidOperatorError(condition.operator)
        rule = TriggerRule(
            id=f"{TRIGGER_PREFIX}{uuid.uuid4().hex[:12]}",
            object_id=object_id,
            instruction=instruction,
            condition=condition,
            only_on_change=only_on_change,
            fire_once=fire_once,
        )
        await self._store.set_object(
            rule.id, {"name": "Trigger for TriggerTool", "type": "string", "role": "state"}
        )
        await self._store.set(rule.id, json.dumps(rule.to_record(), ensure_ascii=False))
        logger.info("trigger_persisted", rule_id=rule.id, object_id=object_id)
        await self.reload()
        return rule

    async def delete_trigger(self, rule_id: str) -> bool:
        found = await self._store.delete(rule_id)
        self._retired.discard(rule_id)
        logger.info("trigger_deleted", rule_id=rule_id, found=found)
        await self.reload()
        return found

    async def reload(self) -> None:
        """Rebuild rules and subscriptions from the persisted records."""
        self._generation += 1
        generation = self._generation
        rules = [r for r in await self.list_triggers() if r.id not in self._retired]
        initial: dict[str, Any] = {}
        for object_id in {r.object_id for r in rules}:
            state = await self._store.get(object_id)
            initial[object_id] = state.value if state is not None else None
        if generation != self._generation:
            logger.debug("trigger_reload_superseded", generation=generation)
            return
        if self._stopped:
            return

        grouped: dict[str, list[TriggerRule]] = {}
        for rule in rules:
            grouped.setdefault(rule.object_id, []).append(rule)

        # No awaits from here on: the swap is atomic for other callbacks.
        for token in self._registry.tokens:
            self._store.unsubscribe(token)
        tokens = tuple(self._store.subscribe(object_id, self.on_state_change) for object_id in grouped)
        for object_id, value in initial.items():
            self._previous.setdefault(object_id, value)
        for object_id in list(self._previous):
            if object_id not in grouped:
                del self._previous[object_id]
        self._registry = _Registry(
            rules=MappingProxyType({r.id: r for r in rules}),
            by_object=MappingProxyType({obj: tuple(group) for obj, group in grouped.items()}),
            tokens=tokens,
        )
        logger.info("triggers_loaded", count=len(rules), watched=len(grouped))

    async def on_state_change(self, state: StateValue) -> None:
        rules = self._registry.by_object.get(state.id, ())
        if not rules:
            return
        previous = self._previous.get(state.id, _MISSING)
        changed = previous is _MISSING or previous != state.value
        self._previous[state.id] = state.value

        for rule in rules:
            if rule.id in self._retired or rule.id not in self._registry.rules:
                continue
            if rule.only_on_change and not changed:
                logger.debug("trigger_unchanged", rule_id=rule.id, object_id=state.id)
                continue
            if rule.condition is not None:
                try:
                    matched = evaluate(rule.condition.operator, state.value, rule.condition.value)
                except InvalidOperatorError as e:
                    logger.warning("trigger_invalid_operator", rule_id=rule.id, operator=e.operator)
                    continue
                if not matched:
                    logger.debug("trigger_condition_not_met", rule_id=rule.id, value=state.value)
                    continue
                notice = prompts.trigger_fired_by_condition(
                    rule.object_id, rule.condition.operator, rule.condition.value
                )
            else:
                notice = prompts.trigger_fired(rule.object_id)

            if rule.fire_once:
                self._retire(rule.id)
            self._fire(rule, notice, state.value)
            if rule.fire_once:
                await self.delete_trigger(rule.id)

    def _retire(self, rule_id: str) -> None:
        self._retired.add(rule_id)
        self._registry = self._registry.without(rule_id)
        logger.info("trigger_retired", rule_id=rule_id)

    def _fire(self, rule: TriggerRule, notice: str, value: Any) -> None:
        logger.info("trigger_fired", rule_id=rule.id, object_id=rule.object_id, value=value)
        if self._orchestrator is None or self._tasks is None:
            logger.error("trigger_no_app_context", rule_id=rule.id)
            return
        payload = {
            "type": "triggerWakeUpOnStateChange",
            "tool": "TriggerTool",
            "prompt": rule.instruction,
            "noticeToAssistant": notice,
            "result": f"{prompts.CURRENT_VALUE}{value}",
        }
        coro = self._orchestrator.request(json.dumps(payload, ensure_ascii=False), is_function_response=True)
        self._tasks.spawn(coro, name=f"trigger:{rule.id}")
