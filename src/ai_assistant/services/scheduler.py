"""APScheduler-based timers: retries, one-shot timeouts and persisted cron jobs."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Mapping, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from ai_assistant.ai import prompts
from ai_assistant.ai.json_utils import repair_and_load
from ai_assistant.config import SchedulerServiceConfig
from ai_assistant.errors import CronExpressionError, ParseError
from ai_assistant.log import get_logger
from ai_assistant.services.base import Service
from ai_assistant.storage.models import CronJobRecord
from ai_assistant.storage.value_store import ValueStore

if TYPE_CHECKING:
    from ai_assistant.ai.orchestrator import RequestOrchestrator

logger = get_logger(__name__)

CRONJOB_PREFIX = "cronjobs."

_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _dow_number(token: str) -> int:
    token = token.strip().lower()
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token)
    if token[:3] in _DOW_NAMES:
        return _DOW_NAMES.index(token[:3])
    raise CronExpressionError(f"Invalid day of week: {token!r}")


def _translate_day_of_week(field: str) -> str:
    """Convert crontab day-of-week (0/7 = Sunday) into APScheduler day names."""
    if field in ("*", "?"):
        return "*"
    days: list[str] = []
    for token in field.split(","):
        base, _, step = token.partition("/")
        try:
            interval = int(step) if step else 1
        except ValueError as e:
            raise CronExpressionError(f"Invalid step in day of week: {token!r}") from e
        if interval < 1:
            raise CronExpressionError(f"Invalid step in day of week: {token!r}")
        if base in ("*", "?"):
            start, end = 0, 6
        elif "-" in base:
            first, last = base.split("-", 1)
            start, end = _dow_number(first), _dow_number(last)
        elif step:
            start, end = _dow_number(base), 6
        else:
            start = end = _dow_number(base)
        if end < start:
            raise CronExpressionError(f"Invalid day of week range: {token!r}")
        for day in range(start, end + 1, interval):
            name = _DOW_NAMES[day % 7]
            if name not in days:
                days.append(name)
    return ",".join(days)


def build_cron_trigger(expression: str, tz: Any = None) -> BaseTrigger:
    """Build a trigger from a 5-field or 6-field (leading seconds) cron expression.

    As in crontab, a job restricting both day of month and day of week
    fires when either one matches.
    """
    parts = (expression or "").split()
    if len(parts) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = parts
    elif len(parts) == 6:
        second, minute, hour, day, month, day_of_week = parts
    else:
        raise CronExpressionError(
            f"Cron expression must have 5 or 6 fields, got {len(parts)}: {expression!r}"
        )
    day = "*" if day == "?" else day
    both_days = not day.startswith("*") and not day_of_week.startswith(("*", "?"))
    day_of_week = _translate_day_of_week(day_of_week)
    fields = {"second": second, "minute": minute, "hour": hour, "month": month, "timezone": tz}
    try:
        if both_days:
            return OrTrigger(
                [
                    CronTrigger(day=day, day_of_week="*", **fields),
                    CronTrigger(day="*", day_of_week=day_of_week, **fields),
                ]
            )
        return CronTrigger(day=day, day_of_week=day_of_week, **fields)
    except ValueError as e:
        raise CronExpressionError(f"Invalid cron expression {expression!r}: {e}") from e


class TaskScheduler(Service):
    """Single cancellable timer facility for everything that fires later.

    Cron jobs are persisted under ``cronjobs.<id>`` in the value store and
    the active set is an immutable snapshot rebuilt from those records.
    One-shot timeouts and internal timers are transient.
    """

    def __init__(
        self,
        config: SchedulerServiceConfig,
        store: ValueStore,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._config = config
        self._store = store
        self._scheduler = scheduler or AsyncIOScheduler(timezone=config.timezone)
        self._orchestrator: RequestOrchestrator | None = None
        self._cronjobs: Mapping[str, CronJobRecord] = MappingProxyType({})
        self._generation = 0
        self._stopped = False

    def set_app_context(self, orchestrator: RequestOrchestrator) -> None:
        """Inject the orchestrator that scheduled fires re-invoke."""
        self._orchestrator = orchestrator
        logger.info("scheduler_app_context_set")

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        self._stopped = False
        self._scheduler.start()
        logger.info("scheduler_started", timezone=self._config.timezone)
        await self.reload()

    async def stop(self) -> None:
        self._stopped = True
        self._scheduler.remove_all_jobs()
        self._cronjobs = MappingProxyType({})
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    # -- generic timers -------------------------------------------------

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        job_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Optional[str]:
        """Run *callback* once after *delay* seconds. Returns the job ID."""
        if self._stopped:
            logger.warning("timer_rejected_after_stop", callback=getattr(callback, "__name__", "?"))
            return None
        job_id = job_id or f"timer.{uuid.uuid4().hex[:12]}"
        run_at = datetime.now(timezone.utc) + timedelta(seconds=max(delay, 0))
        self._scheduler.add_job(
            callback,
            DateTrigger(run_date=run_at),
            id=job_id,
            args=list(args),
            kwargs=kwargs,
            misfire_grace_time=None,
            replace_existing=True,
        )
        logger.debug("timer_added", job_id=job_id, delay=delay)
        return job_id

    def cancel(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("timer_cancelled", job_id=job_id)
        return True

    def pending_job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    # -- one-shot timeouts ----------------------------------------------

    def add_timeout(self, seconds: float, instruction: str) -> Optional[str]:
        """Reactivate the assistant once after *seconds*. Not persisted."""
        job_id = self.call_later(
            seconds,
            self._fire_timeout,
            seconds,
            instruction,
            job_id=f"timeout.{uuid.uuid4().hex[:12]}",
        )
        if job_id:
            logger.info("timeout_added", job_id=job_id, seconds=seconds)
        return job_id

    async def _fire_timeout(self, seconds: float, instruction: str) -> None:
        logger.info("timeout_fired", seconds=seconds)
        await self._reactivate(
            {
                "type": "wakeUpFromTimeout",
                "tool": "SchedulerTool",
                "prompt": instruction,
                "noticeToAssistant": prompts.timeout_fired(seconds),
                "result": prompts.CURRENT_TIME + prompts.format_now(),
            }
        )

    # -- persisted cron jobs --------------------------------------------

    def active_cronjobs(self) -> Mapping[str, CronJobRecord]:
        return self._cronjobs

    async def list_cronjobs(self) -> list[CronJobRecord]:
        """Read every valid cron job record from the value store."""
        records = []
        for state_id in await self._store.list_ids(CRONJOB_PREFIX):
            state = await self._store.get(state_id)
            if state is None or not state.value:
                continue
            try:
                data = state.value if isinstance(state.value, dict) else repair_and_load(str(state.value))
            except ParseError as e:
                logger.error("cronjob_record_unreadable", job_id=state_id, error=str(e))
                continue
            if isinstance(data, dict) and data.get("cron") and data.get("instruction"):
                records.append(CronJobRecord(id=state_id, cron=str(data["cron"]), instruction=str(data["instruction"])))
        return records

    async def create_cronjob(self, cron_expr: str, instruction: str) -> CronJobRecord:
        """Validate, persist and activate a cron job. Raises CronExpressionError."""
        if not instruction:
            raise CronExpressionError("A cron job needs an instruction")
        build_cron_trigger(cron_expr, self._config.timezone)
        record = CronJobRecord(
            id=f"{CRONJOB_PREFIX}{uuid.uuid4().hex[:12]}",
            cron=cron_expr,
            instruction=instruction,
        )
        await self._store.set_object(
            record.id, {"name": "Cron job for SchedulerTool", "type": "string", "role": "state"}
        )
        await self._store.set(record.id, json.dumps(record.to_record(), ensure_ascii=False))
        logger.info("cronjob_persisted", job_id=record.id, cron=cron_expr)
        await self.reload()
        return record

    async def delete_cronjob(self, job_id: str) -> bool:
        found = await self._store.delete(job_id)
        logger.info("cronjob_deleted", job_id=job_id, found=found)
        await self.reload()
        return found

    async def reload(self) -> None:
        """Rebuild the active cron set from the persisted records."""
        self._generation += 1
        generation = self._generation
        records = await self.list_cronjobs()
        if generation != self._generation:
            logger.debug("cronjob_reload_superseded", generation=generation)
            return
        if self._stopped:
            return

        triggers: dict[str, tuple[CronJobRecord, BaseTrigger]] = {}
        for record in records:
            try:
                triggers[record.id] = (record, build_cron_trigger(record.cron, self._config.timezone))
            except CronExpressionError as e:
                logger.error("cronjob_invalid", job_id=record.id, error=str(e))

        # No awaits from here on: the swap is atomic for other callbacks.
        for job_id in self._cronjobs:
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                pass
        for job_id, (record, trigger) in triggers.items():
            self._scheduler.add_job(
                self._fire_cronjob,
                trigger,
                id=job_id,
                kwargs={"job_id": job_id, "cron": record.cron, "instruction": record.instruction},
                replace_existing=True,
            )
        self._cronjobs = MappingProxyType({job_id: rec for job_id, (rec, _) in triggers.items()})
        logger.info("cronjobs_loaded", count=len(triggers), total=len(records))

    async def _fire_cronjob(self, job_id: str, cron: str, instruction: str) -> None:
        logger.info("cronjob_fired", job_id=job_id, cron=cron)
        await self._reactivate(
            {
                "type": "wakeUpFromCronjob",
                "tool": "SchedulerTool",
                "prompt": instruction,
                "noticeToAssistant": prompts.cronjob_fired(cron),
                "result": prompts.CURRENT_TIME + prompts.format_now(),
            }
        )

    async def _reactivate(self, payload: dict[str, Any]) -> None:
        if self._orchestrator is None:
            logger.error("scheduler_no_app_context", type=payload.get("type"))
            return
        try:
            await self._orchestrator.request(
                json.dumps(payload, ensure_ascii=False), is_function_response=True
            )
        except Exception as e:
            logger.error("scheduler_reactivation_error", type=payload.get("type"), error=str(e))
