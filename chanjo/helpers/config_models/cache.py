from functools import cached_property

from pydantic import BaseModel, Field

from chanjo.persistence.icache import ICache


class CacheModel(BaseModel):
    """
    Process-local cache of the vaccination schedule.

    Guardian profiles are never cached, a corrected phone number must be used by the next run.
    """

    max_size: int = Field(default=128, ge=10)
    schedule_ttl_sec: int = Field(default=60 * 60, ge=0)

    @cached_property
    def instance(self) -> ICache:
        from chanjo.persistence.memory import (
            MemoryCache,
        )

        return MemoryCache(self)
