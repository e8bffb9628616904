"""Service lifecycle manager."""

from __future__ import annotations

from ai_assistant.log import get_logger
from ai_assistant.services.base import Service
from ai_assistant.services.scheduler import TaskScheduler
from ai_assistant.services.triggers import ConditionTriggerEngine

logger = get_logger(__name__)


class ServiceManager:
    """Starts the scheduler before the trigger engine and stops them in reverse."""

    def __init__(self, scheduler: TaskScheduler, triggers: ConditionTriggerEngine):
        self._scheduler = scheduler
        self._triggers = triggers

    @property
    def services(self) -> tuple[Service, ...]:
        return (self._scheduler, self._triggers)

    async def start_all(self) -> None:
        """Start all services; each restores its persisted registry."""
        for service in self.services:
            await service.start()
        logger.info("all_services_started")

    async def stop_all(self) -> None:
        """Stop watching values first so nothing schedules onto a stopped scheduler."""
        for service in reversed(self.services):
            await service.stop()
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {service.service_name: await service.health_check() for service in self.services}
