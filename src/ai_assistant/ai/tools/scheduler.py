"""Scheduler tool: one-shot timeouts and recurring cron jobs."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Optional

from ai_assistant.ai import prompts
from ai_assistant.ai.requester import ModelRequester
from ai_assistant.ai.tools.base import ModelTool, ToolResult, as_list
from ai_assistant.errors import CronExpressionError
from ai_assistant.log import get_logger

if TYPE_CHECKING:
    from ai_assistant.services.scheduler import TaskScheduler

logger = get_logger(__name__)


def _seconds(value: Any) -> Optional[float]:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


class SchedulerTool(ModelTool):
    label = "SchedulerTool"

    def __init__(self, requester: ModelRequester, scheduler: TaskScheduler):
        super().__init__(requester)
        self._scheduler = scheduler

    @property
    def name(self) -> str:
        return "scheduler"

    @property
    def description(self) -> str:
        return (
            "Create timeouts and recurring cron jobs that wake you up later with an "
            "instruction, or delete existing cron jobs. Describe the schedule and the "
            "instruction in plain text."
        )

    @property
    def system_prompt(self) -> str:
        return prompts.tool_system_prompt(prompts.SCHEDULER_PURPOSE, prompts.SCHEDULER_RESPONSE_FORMAT)

    async def build_message(self, instruction: str) -> str:
        cronjobs = [
            {"id": job.id, **job.to_record()} for job in await self._scheduler.list_cronjobs()
        ]
        return prompts.scheduler_tool_message(instruction, cronjobs)

    async def handle(self, data: dict[str, Any]) -> ToolResult:
        created_cronjobs = []
        for item in as_list(data.get("createCronjobs")):
            if not isinstance(item, dict):
                continue
            try:
                job = await self._scheduler.create_cronjob(
                    str(item.get("cronExpression") or ""), str(item.get("instruction") or "")
                )
            except CronExpressionError as e:
                logger.warning("scheduler_tool_invalid_cronjob", item=item, error=str(e))
                continue
            created_cronjobs.append({"id": job.id, **job.to_record()})

        created_timeouts = []
        for item in as_list(data.get("createTimeouts")):
            if not isinstance(item, dict):
                continue
            seconds = _seconds(item.get("timeoutSeconds"))
            instruction = item.get("instruction")
            if seconds is None or not instruction:
                logger.warning("scheduler_tool_invalid_timeout", item=item)
                continue
            if self._scheduler.add_timeout(seconds, str(instruction)):
                created_timeouts.append({"timeoutSeconds": seconds, "instruction": instruction})

        deleted_cronjobs = []
        for job_id in as_list(data.get("deleteCronjobs")):
            if isinstance(job_id, str) and await self._scheduler.delete_cronjob(job_id):
                deleted_cronjobs.append(job_id)

        return ToolResult(
            tool=self.label,
            reasoning=data.get("reasoning"),
            notice_to_assistant=data.get("noticeToAssistant"),
            result={
                "createdCronjobs": created_cronjobs,
                "deletedCronjobs": deleted_cronjobs,
                "createdTimeouts": created_timeouts,
            },
        )
