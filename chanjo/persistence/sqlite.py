from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from os import makedirs
from os.path import dirname

from aiosqlite import Connection, Error as SqliteError, connect as sqlite_connect
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from pydantic import ValidationError

from chanjo.helpers.config_models.cache import CacheModel
from chanjo.helpers.config_models.database import SqliteModel
from chanjo.helpers.logging import logger
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

# Instrument sqlite
SQLite3Instrumentor().instrument()


def _dt_key(value: datetime) -> str:
    """
    Sortable text form of a naive datetime.

    Fixed width, so that SQLite text comparison matches the chronological order.
    """
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")


class SqliteStore(IStore):
    """
    SQLite store, for local development and tests.

    Records are kept as JSON documents, with the queried attributes duplicated in indexed columns.
    """

    _config: SqliteModel
    _db_path: str
    _init_done: bool = False

    def __init__(self, cache: ICache, cache_config: CacheModel, config: SqliteModel):
        super().__init__(cache, cache_config)
        self._config = config
        self._db_path = config.full_path()
        logger.info("Using SQLite database at %s", self._db_path)

        # Create folder if does not exist
        folder = dirname(self._db_path)
        if folder:
            makedirs(name=folder, exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite database.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except StoreError:
            logger.exception("Error requesting SQLite")
        return ReadinessEnum.FAIL

    async def baby_get(
        self,
        baby_id: str,
    ) -> BabyModel | None:
        logger.debug("Loading baby %s", baby_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM babies WHERE id = ?",
                (baby_id,),
            )
            row = await cursor.fetchone()
        if not row:
            return None
        try:
            return BabyModel.model_validate_json(row[0])
        except ValidationError:
            logger.warning("Baby %s is not readable", baby_id, exc_info=True)
        return None

    async def baby_administered_append(
        self,
        baby_id: str,
        entries: Sequence[AdministeredEntryModel],
    ) -> None:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM babies WHERE id = ?",
                (baby_id,),
            )
            row = await cursor.fetchone()
            if not row:
                raise BabyNotFoundError(baby_id)
            baby = BabyModel.model_validate_json(row[0])
            baby.administered = [*baby.administered, *entries]
            await db.execute(
                "UPDATE babies SET data = ? WHERE id = ?",
                (baby.model_dump_json(), baby_id),
            )
            await db.commit()

    async def reminder_search_due(
        self,
        cadence: CadenceEnum,
        now: datetime,
    ) -> list[ReminderModel]:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE cadence = ? AND trigger_at <= ? AND sent = 0 ORDER BY trigger_at",
                (cadence.value, _dt_key(now)),
            )
            rows = await cursor.fetchall()
        return self._parse_reminders(rows)

    async def reminder_search_unsent(
        self,
        baby_id: str,
        after: datetime | None = None,
    ) -> list[ReminderModel]:
        query = "SELECT data FROM reminders WHERE baby_id = ? AND sent = 0"
        params: tuple[str, ...] = (baby_id,)
        if after:
            query += " AND trigger_at > ?"
            params += (_dt_key(after),)
        async with self._use_db() as db:
            cursor = await db.execute(f"{query} ORDER BY trigger_at", params)
            rows = await cursor.fetchall()
        return self._parse_reminders(rows)

    async def reminder_search_by_baby(
        self,
        baby_id: str,
    ) -> list[ReminderModel]:
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM reminders WHERE baby_id = ? ORDER BY trigger_at",
                (baby_id,),
            )
            rows = await cursor.fetchall()
        return self._parse_reminders(rows)

    async def reminder_batch_upsert(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        self._check_batch(reminders)
        if not reminders:
            return
        async with self._use_db() as db:
            try:
                await db.executemany(
                    "INSERT OR REPLACE INTO reminders (id, baby_id, recipient_id, cadence, trigger_at, sent, data) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            str(reminder.reminder_id),
                            reminder.baby_id,
                            reminder.recipient_id,
                            reminder.cadence.value,
                            _dt_key(reminder.trigger_at),
                            int(reminder.sent),
                            reminder.model_dump_json(),
                        )
                        for reminder in reminders
                    ],
                )
                await db.commit()
            except SqliteError as e:
                await db.rollback()
                raise ReminderBatchError(
                    f"Upsert of {len(reminders)} reminders failed"
                ) from e

    async def reminder_batch_delete(
        self,
        reminders: Sequence[ReminderModel],
    ) -> None:
        self._check_batch(reminders)
        if not reminders:
            return
        async with self._use_db() as db:
            try:
                await db.executemany(
                    "DELETE FROM reminders WHERE id = ?",
                    [(str(reminder.reminder_id),) for reminder in reminders],
                )
                await db.commit()
            except SqliteError as e:
                await db.rollback()
                raise ReminderBatchError(
                    f"Delete of {len(reminders)} reminders failed"
                ) from e

    async def reminder_mark_sent(
        self,
        reminder: ReminderModel,
    ) -> None:
        updated = reminder.model_copy(update={"sent": True})
        # Update only, a reminder deleted by a regeneration meanwhile must not come back
        async with self._use_db() as db:
            cursor = await db.execute(
                "UPDATE reminders SET sent = 1, data = ? WHERE id = ?",
                (updated.model_dump_json(), str(reminder.reminder_id)),
            )
            await db.commit()
        reminder.sent = True
        if cursor.rowcount == 0:
            logger.info(
                "Reminder %s disappeared before being marked as sent",
                reminder.reminder_id,
            )

    async def baby_create(self, baby: BabyModel) -> None:
        """
        Insert or replace a baby.

        Babies are owned by the profile service, this exists for local development and tests.
        """
        async with self._use_db() as db:
            await db.execute(
                "INSERT OR REPLACE INTO babies (id, data) VALUES (?, ?)",
                (baby.baby_id, baby.model_dump_json()),
            )
            await db.commit()

    async def recipient_create(self, recipient: RecipientModel) -> None:
        """
        Insert or replace a recipient, for local development and tests.
        """
        async with self._use_db() as db:
            await db.execute(
                "INSERT OR REPLACE INTO recipients (id, data) VALUES (?, ?)",
                (recipient.recipient_id, recipient.model_dump_json()),
            )
            await db.commit()

    async def schedule_replace(self, schedule: Sequence[ScheduleEntryModel]) -> None:
        """
        Replace the whole vaccination schedule, for local development and tests.
        """
        async with self._use_db() as db:
            await db.execute("DELETE FROM schedule")
            await db.executemany(
                "INSERT INTO schedule (position, data) VALUES (?, ?)",
                [(i, entry.model_dump_json()) for i, entry in enumerate(schedule)],
            )
            await db.commit()
        await self._cache.delete(self._cache_key_schedule())

    async def recipient_get(
        self,
        recipient_id: str,
    ) -> RecipientModel | None:
        logger.debug("Loading recipient %s", recipient_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                "SELECT data FROM recipients WHERE id = ?",
                (recipient_id,),
            )
            row = await cursor.fetchone()
        if not row:
            return None
        try:
            return RecipientModel.model_validate_json(row[0])
        except ValidationError:
            logger.warning("Recipient %s is not readable", recipient_id, exc_info=True)
        return None

    async def _schedule_get_live(self) -> list[ScheduleEntryModel]:
        async with self._use_db() as db:
            cursor = await db.execute("SELECT data FROM schedule ORDER BY position")
            rows = await cursor.fetchall()
        schedule: list[ScheduleEntryModel] = []
        for row in rows:
            try:
                schedule.append(ScheduleEntryModel.model_validate_json(row[0]))
            except ValidationError:
                logger.warning("Skipping unreadable schedule entry", exc_info=True)
        return schedule

    @staticmethod
    def _parse_reminders(rows) -> list[ReminderModel]:
        reminders: list[ReminderModel] = []
        for row in rows:
            try:
                reminders.append(ReminderModel.model_validate_json(row[0]))
            except ValidationError:
                logger.warning("Skipping unreadable reminder", exc_info=True)
        return reminders

    async def _init_db(self, db: Connection) -> None:
        """
        Initialize the database.

        See: https://sqlite.org/wal.html
        """
        logger.info("First connection, init database")
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create tables
        await db.execute(
            "CREATE TABLE IF NOT EXISTS reminders (id VARCHAR(36) PRIMARY KEY, baby_id TEXT NOT NULL, recipient_id TEXT NOT NULL, cadence TEXT NOT NULL, trigger_at TEXT NOT NULL, sent INTEGER NOT NULL DEFAULT 0, data TEXT NOT NULL)"
        )
        await db.execute(
            "CREATE TABLE IF NOT EXISTS babies (id TEXT PRIMARY KEY, data TEXT NOT NULL)"
        )
        await db.execute(
            "CREATE TABLE IF NOT EXISTS recipients (id TEXT PRIMARY KEY, data TEXT NOT NULL)"
        )
        await db.execute(
            "CREATE TABLE IF NOT EXISTS schedule (position INTEGER PRIMARY KEY, data TEXT NOT NULL)"
        )
        # Create indexes, one per access pattern
        await db.execute(
            "CREATE INDEX IF NOT EXISTS reminders_by_trigger_at ON reminders (cadence, trigger_at)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS reminders_by_baby ON reminders (baby_id, sent)"
        )
        # Write changes to disk
        await db.commit()

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection]:
        """
        Generate the SQLite client and close it after use.

        Driver errors are raised as `StoreError`.
        """
        try:
            async with sqlite_connect(
                database=self._db_path,
            ) as client:
                if not self._init_done:
                    await self._init_db(client)
                    self._init_done = True
                yield client
        except SqliteError as e:
            raise StoreError(f"Error requesting SQLite at {self._db_path}") from e
