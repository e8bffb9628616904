"""Lifecycle interface for services that own persisted registries."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """A component started and stopped with the app.

    Services keep an in-memory registry derived from records in the value
    store; ``reload`` rebuilds it from those records.
    """

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Cancel everything pending. Nothing may fire afterwards."""
        ...

    @abstractmethod
    async def reload(self) -> None:
        ...

    async def health_check(self) -> bool:
        return True
