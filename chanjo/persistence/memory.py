from collections import OrderedDict
from time import monotonic

from chanjo.helpers.config_models.cache import CacheModel
from chanjo.models.readiness import ReadinessEnum
from chanjo.persistence.icache import ICache


class MemoryCache(ICache):
    """
    Cache local to the process, bounded in size.

    When full, the least recently read or written key is evicted. Expiry uses the monotonic clock, so a system clock change does not extend or shorten it.
    """

    _config: CacheModel
    # Key to (expiry, value), oldest first
    _entries: OrderedDict[str, tuple[float, bytes | None]]

    def __init__(self, config: CacheModel):
        self._config = config
        self._entries = OrderedDict()

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if expires_at <= monotonic():
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return value

    async def set(
        self,
        key: str,
        ttl_sec: int,
        value: str | bytes | None,
    ) -> bool:
        if isinstance(value, str):
            value = value.encode()
        self._entries[key] = (monotonic() + ttl_sec, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._config.max_size:
            self._entries.popitem(last=False)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None
