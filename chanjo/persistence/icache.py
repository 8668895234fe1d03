from abc import ABC, abstractmethod

from chanjo.helpers.monitoring import start_as_current_span
from chanjo.models.readiness import ReadinessEnum


class ICache(ABC):
    """
    Short-lived key-value cache, in front of the slow reference data reads.

    Values are bytes, callers serialize them. A missing or expired key reads as `None`.
    """

    @abstractmethod
    @start_as_current_span("cache_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("cache_get")
    async def get(self, key: str) -> bytes | None:
        pass

    @abstractmethod
    @start_as_current_span("cache_set")
    async def set(
        self,
        key: str,
        ttl_sec: int,
        value: str | bytes | None,
    ) -> bool:
        pass

    @abstractmethod
    @start_as_current_span("cache_delete")
    async def delete(self, key: str) -> bool:
        pass
