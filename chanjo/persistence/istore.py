from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from chanjo.helpers.config_models.cache import CacheModel
from chanjo.helpers.monitoring import start_as_current_span, suppress
from chanjo.models.baby import AdministeredEntryModel, BabyModel
from chanjo.models.readiness import ReadinessEnum
from chanjo.models.recipient import RecipientModel
from chanjo.models.reminder import CadenceEnum, ReminderModel
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.icache import ICache

# Maximum items accepted by a single batch write or delete
BATCH_MAX_ITEMS = 25


class StoreError(Exception):
    """
    The store cannot be reached, or rejected a request.
    """


class ReminderBatchError(StoreError):
    """
    A reminder batch was not fully applied.
    """


class BabyNotFoundError(Exception):
    def __init__(self, baby_id: str):
        super().__init__(f"Baby {baby_id} not found")
        self.baby_id = baby_id


class IStore(ABC):
    _cache: ICache
    _cache_config: CacheModel

    def __init__(self, cache: ICache, cache_config: CacheModel):
        self._cache = cache
        self._cache_config = cache_config

    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_baby_get")
    async def baby_get(
        self,
        baby_id: str,
    ) -> BabyModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_baby_administered_append")
    async def baby_administered_append(
        self,
        baby_id: str,
        entries: Sequence[AdministeredEntryModel],
    ) -> None:
        """
        Append entries to the administered list of a baby.

        Raises `BabyNotFoundError` if the baby does not exist.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_search_due")
    async def reminder_search_due(
        self,
        cadence: CadenceEnum,
        now: datetime,
    ) -> list[ReminderModel]:
        """
        Unsent reminders of a cadence, triggered at or before `now`.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_search_unsent")
    async def reminder_search_unsent(
        self,
        baby_id: str,
        after: datetime | None = None,
    ) -> list[ReminderModel]:
        """
        Unsent reminders of a baby, optionally only those triggered strictly after `after`.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_search_by_baby")
    async def reminder_search_by_baby(
        self,
        baby_id: str,
    ) -> list[ReminderModel]:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_batch_upsert")
    async def reminder_batch_upsert(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        """
        Write up to `BATCH_MAX_ITEMS` reminders in a single request.

        Raises `ReminderBatchError` if the batch is not applied.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_batch_delete")
    async def reminder_batch_delete(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        """
        Delete up to `BATCH_MAX_ITEMS` reminders in a single request.

        Raises `ReminderBatchError` if the batch is not applied.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_mark_sent")
    async def reminder_mark_sent(
        self,
        reminder: ReminderModel,
    ) -> None:
        pass

    @abstractmethod
    @start_as_current_span("store_recipient_get")
    async def recipient_get(
        self,
        recipient_id: str,
    ) -> RecipientModel | None:
        """
        Guardian of a baby, read live on each call as the profile service may change it anytime.
        """

    @start_as_current_span("store_schedule_get")
    async def schedule_get(self) -> list[ScheduleEntryModel]:
        adapter = TypeAdapter(list[ScheduleEntryModel])

        # Try cache
        cache_key = self._cache_key_schedule()
        cached = await self._cache.get(cache_key)
        if cached:
            with suppress(ValidationError):
                return adapter.validate_json(cached)

        # Try live
        schedule = await self._schedule_get_live()

        # Update cache, an empty schedule is likely a misconfiguration and must not stick
        if schedule:
            await self._cache.set(
                key=cache_key,
                ttl_sec=self._cache_config.schedule_ttl_sec,
                value=adapter.dump_json(schedule),
            )

        return schedule

    @abstractmethod
    async def _schedule_get_live(self) -> list[ScheduleEntryModel]:
        pass

    @staticmethod
    def _check_batch(reminders: Sequence[ReminderModel]) -> None:
        if len(reminders) > BATCH_MAX_ITEMS:
            raise ValueError(
                f"Batch of {len(reminders)} reminders exceeds the limit of {BATCH_MAX_ITEMS}"
            )

    def _cache_key_schedule(self) -> str:
        return f"{self.__class__.__name__}-schedule"

