from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import uuid4

from azure.core import MatchConditions
from azure.core.exceptions import AzureError
from azure.cosmos import ConsistencyLevel
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import (
    CosmosBatchOperationError,
    CosmosResourceNotFoundError,
)
from pydantic import ValidationError

from chanjo.helpers.cache import lru_acache
from chanjo.helpers.config_models.cache import CacheModel
from chanjo.helpers.config_models.database import CosmosDbModel
from chanjo.helpers.http import azure_transport
from chanjo.helpers.identity import credential
from chanjo.helpers.logging import logger
from chanjo.helpers.monitoring import suppress
from chanjo.models.baby import AdministeredEntryModel, BabyModel
from chanjo.models.readiness import ReadinessEnum
from chanjo.models.recipient import RecipientModel
from chanjo.models.reminder import CadenceEnum, ReminderModel
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.icache import ICache
from chanjo.persistence.istore import (
    BabyNotFoundError,
    IStore,
    ReminderBatchError,
    StoreError,
)


class CosmosDbStore(IStore):
    """
    Cosmos DB store.

    Reminders are partitioned by baby, so that a regeneration is a set of transactional batches within one partition. Babies, recipients and schedule entries are partitioned by their own id.
    """

    _config: CosmosDbModel

    def __init__(self, cache: ICache, cache_config: CacheModel, config: CosmosDbModel):
        super().__init__(cache, cache_config)
        logger.info("Using Cosmos DB %s", config.database)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Cosmos DB service.

        This will validate the ACID properties of the reminders container: Create, Read, Delete.
        """
        test_id = str(uuid4())
        test_partition = f"readiness-{test_id}"
        test_dict = {
            "id": test_id,  # unique id
            "baby_id": test_partition,  # partition key
            "test": "test",
        }
        try:
            async with self._use_client(self._config.reminders_container) as db:
                # Create a new item
                await db.upsert_item(body=test_dict)
                # Test the item is the same
                read_item = await db.read_item(
                    item=test_id, partition_key=test_partition
                )
                assert (
                    {k: v for k, v in read_item.items() if k in test_dict} == test_dict
                )  # Check only the relevant fields, Cosmos DB adds metadata
                # Delete the item
                await db.delete_item(item=test_id, partition_key=test_partition)
            return ReadinessEnum.OK
        except AssertionError:
            logger.exception("Readiness test failed")
        except AzureError:
            logger.exception("Error requesting CosmosDB")
        except Exception:
            logger.exception("Unknown error while checking Cosmos DB readiness")
        return ReadinessEnum.FAIL

    async def baby_get(
        self,
        baby_id: str,
    ) -> BabyModel | None:
        logger.debug("Loading baby %s", baby_id)
        raw = await self._read(self._config.babies_container, baby_id)
        if not raw:
            return None
        try:
            return BabyModel.model_validate({**raw, "baby_id": raw["id"]})
        except ValidationError:
            logger.warning("Baby %s is not readable", baby_id, exc_info=True)
        return None

    async def baby_administered_append(
        self,
        baby_id: str,
        entries: Sequence[AdministeredEntryModel],
    ) -> None:
        raw = await self._read(self._config.babies_container, baby_id)
        if not raw:
            raise BabyNotFoundError(baby_id)
        administered = [
            *(raw.get("administered") or []),
            *(entry.model_dump(mode="json") for entry in entries),
        ]
        try:
            async with self._use_client(self._config.babies_container) as db:
                # Optimistic concurrency, a concurrent append fails instead of being lost
                await db.patch_item(
                    etag=raw["_etag"],
                    item=baby_id,
                    match_condition=MatchConditions.IfNotModified,
                    partition_key=baby_id,
                    patch_operations=[
                        {
                            "op": "set",
                            "path": "/administered",
                            "value": administered,
                        }
                    ],
                )
        except AzureError as e:
            raise StoreError(f"Cannot update administered list of {baby_id}") from e

    async def reminder_search_due(
        self,
        cadence: CadenceEnum,
        now: datetime,
    ) -> list[ReminderModel]:
        return await self._query_reminders(
            query="SELECT * FROM c WHERE c.cadence = @cadence AND c.trigger_at <= @now AND c.sent = false",
            parameters=[
                {"name": "@cadence", "value": cadence.value},
                {"name": "@now", "value": now.isoformat()},
            ],
        )

    async def reminder_search_unsent(
        self,
        baby_id: str,
        after: datetime | None = None,
    ) -> list[ReminderModel]:
        extra_where = "AND c.trigger_at > @after" if after else ""
        return await self._query_reminders(
            partition_key=baby_id,
            query=f"SELECT * FROM c WHERE c.baby_id = @baby_id AND c.sent = false {extra_where}",
            parameters=[
                {"name": "@baby_id", "value": baby_id},
                {"name": "@after", "value": after.isoformat() if after else None},
            ],
        )

    async def reminder_search_by_baby(
        self,
        baby_id: str,
    ) -> list[ReminderModel]:
        return await self._query_reminders(
            partition_key=baby_id,
            query="SELECT * FROM c WHERE c.baby_id = @baby_id ORDER BY c.trigger_at",
            parameters=[{"name": "@baby_id", "value": baby_id}],
        )

    async def reminder_batch_upsert(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        self._check_batch(reminders)
        await self._execute_batches(
            operations=[
                (
                    reminder.baby_id,
                    ("upsert", (self._reminder_to_doc(reminder),)),
                )
                for reminder in reminders
            ],
        )

    async def reminder_batch_delete(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        self._check_batch(reminders)
        await self._execute_batches(
            operations=[
                (
                    reminder.baby_id,
                    ("delete", (str(reminder.reminder_id),)),
                )
                for reminder in reminders
            ],
        )

    async def reminder_mark_sent(
        self,
        reminder: ReminderModel,
    ) -> None:
        try:
            async with self._use_client(self._config.reminders_container) as db:
                # See: https://learn.microsoft.com/en-us/azure/cosmos-db/partial-document-update#supported-operations
                await db.patch_item(
                    item=str(reminder.reminder_id),
                    partition_key=reminder.baby_id,
                    patch_operations=[
                        {
                            "op": "set",
                            "path": "/sent",
                            "value": True,
                        }
                    ],
                )
        except CosmosResourceNotFoundError:
            # Deleted by a regeneration meanwhile, nothing to mark
            logger.info(
                "Reminder %s disappeared before being marked as sent",
                reminder.reminder_id,
            )
        except AzureError as e:
            raise StoreError(f"Cannot mark reminder {reminder.reminder_id}") from e
        reminder.sent = True

    async def recipient_get(
        self,
        recipient_id: str,
    ) -> RecipientModel | None:
        logger.debug("Loading recipient %s", recipient_id)
        raw = await self._read(self._config.recipients_container, recipient_id)
        if not raw:
            return None
        try:
            return RecipientModel.model_validate({**raw, "recipient_id": raw["id"]})
        except ValidationError:
            logger.warning("Recipient %s is not readable", recipient_id, exc_info=True)
        return None

    async def _schedule_get_live(self) -> list[ScheduleEntryModel]:
        schedule: list[ScheduleEntryModel] = []
        try:
            async with self._use_client(self._config.schedule_container) as db:
                async for raw in db.query_items(query="SELECT * FROM c"):
                    try:
                        schedule.append(ScheduleEntryModel.model_validate(raw))
                    except ValidationError:
                        logger.warning(
                            "Skipping unreadable schedule entry", exc_info=True
                        )
        except AzureError as e:
            raise StoreError("Cannot read the vaccination schedule") from e
        return schedule

    async def _read(self, container: str, item_id: str) -> dict[str, Any] | None:
        """
        Point read of a document partitioned by its own id.
        """
        raw = None
        try:
            async with self._use_client(container) as db:
                with suppress(CosmosResourceNotFoundError):
                    raw = await db.read_item(item=item_id, partition_key=item_id)
        except AzureError as e:
            raise StoreError(f"Cannot read {item_id} from {container}") from e
        return raw

    async def _query_reminders(
        self,
        query: str,
        parameters: list[dict[str, Any]],
        partition_key: str | None = None,
    ) -> list[ReminderModel]:
        reminders: list[ReminderModel] = []
        kwargs = {"partition_key": partition_key} if partition_key else {}
        try:
            async with self._use_client(self._config.reminders_container) as db:
                items = db.query_items(
                    parameters=parameters,
                    query=query,
                    **kwargs,
                )
                async for raw in items:
                    try:
                        reminders.append(ReminderModel.model_validate(raw))
                    except ValidationError:
                        logger.warning("Skipping unreadable reminder", exc_info=True)
        except AzureError as e:
            raise StoreError("Cannot query reminders") from e
        return reminders

    async def _execute_batches(
        self,
        operations: list[tuple[str, tuple[str, tuple[Any, ...]]]],
    ) -> None:
        """
        Run operations as transactional batches, one per partition.

        The first failed batch stops the others and raises `ReminderBatchError`.
        """
        by_partition: dict[str, list[tuple[str, tuple[Any, ...]]]] = {}
        for partition_key, operation in operations:
            by_partition.setdefault(partition_key, []).append(operation)

        try:
            async with self._use_client(self._config.reminders_container) as db:
                for partition_key, batch in by_partition.items():
                    try:
                        await db.execute_item_batch(
                            batch_operations=batch,
                            partition_key=partition_key,
                        )
                    except CosmosBatchOperationError as e:
                        raise ReminderBatchError(
                            f"Batch of {len(batch)} operations failed at index {e.error_index} for {partition_key}"
                        ) from e
                    except AzureError as e:
                        raise ReminderBatchError(
                            f"Batch of {len(batch)} operations failed for {partition_key}"
                        ) from e
        # Connection or credential failure before any batch was sent
        except AzureError as e:
            raise ReminderBatchError("Cannot reach the reminders container") from e

    @staticmethod
    def _reminder_to_doc(reminder: ReminderModel) -> dict[str, Any]:
        data = reminder.model_dump(mode="json")
        data["id"] = str(reminder.reminder_id)
        return data

    @lru_acache()
    async def _use_service_client(self) -> CosmosClient:
        """
        Generate the Cosmos DB client.
        """
        logger.debug("Using Cosmos DB service client for %s", self._config.endpoint)

        return CosmosClient(
            # Usage
            consistency_level=ConsistencyLevel.Strong,
            # Reliability
            connection_timeout=10,  # 10 secs
            retry_backoff_factor=0.8,
            retry_backoff_max=8,
            retry_total=3,
            # Performance
            transport=await azure_transport(),
            # Deployment
            url=self._config.endpoint,
            # Authentication
            credential=await credential(),
        )

    @asynccontextmanager
    async def _use_client(self, container: str) -> AsyncGenerator[ContainerProxy]:
        """
        Generate the container client.
        """
        async with await self._use_service_client() as client:
            database = client.get_database_client(self._config.database)
            yield database.get_container_client(container)
