from datetime import datetime, timedelta

import pytest
from pytest_assume.plugin import assume

from chanjo.helpers.config import CONFIG
from chanjo.helpers.reminders import (
    chunks,
    materialize,
    regenerate_for_baby,
    schedule_new_baby,
)
from chanjo.models.baby import BabyModel
from chanjo.models.reminder import CadenceEnum, ReminderModel, reminder_id
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.istore import (
    BATCH_MAX_ITEMS,
    BabyNotFoundError,
    ReminderBatchError,
)
from chanjo.persistence.sqlite import SqliteStore


def test_reminder_id_deterministic() -> None:
    """
    Test the reminder identity only depends on the baby, the vaccine, the cadence and the trigger day.
    """
    kwargs = {
        "baby_id": "baby-1",
        "cadence": CadenceEnum.DAILY,
        "trigger_at": datetime(2024, 2, 11, 11),
        "vaccine": "BCG",
    }
    same = reminder_id(**kwargs)

    assume(reminder_id(**kwargs) == same)
    # Time of the day is not part of the identity
    assume(reminder_id(**{**kwargs, "trigger_at": datetime(2024, 2, 11, 8)}) == same)
    assume(reminder_id(**{**kwargs, "baby_id": "baby-2"}) != same)
    assume(reminder_id(**{**kwargs, "cadence": CadenceEnum.WEEKLY}) != same)
    assume(reminder_id(**{**kwargs, "trigger_at": datetime(2024, 2, 12, 11)}) != same)
    assume(reminder_id(**{**kwargs, "vaccine": "OPV"}) != same)

    reminder = ReminderModel(
        baby_id="baby-1",
        cadence=CadenceEnum.DAILY,
        recipient_id="recipient-1",
        trigger_at=datetime(2024, 2, 11, 11),
        vaccination_date=datetime(2024, 2, 12),
        vaccine="BCG",
    )
    assume(reminder.reminder_id == same)


def test_chunks() -> None:
    assume(
        [list(chunk) for chunk in chunks([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    )
    assume(not list(chunks([], 2)))


@pytest.mark.asyncio(loop_scope="session")
async def test_materialize(
    baby: BabyModel,
    now: datetime,
    schedule: list[ScheduleEntryModel],
    store: SqliteStore,
) -> None:
    """
    Test a regeneration writes the projected reminders, and running it again overwrites them.

    Steps:
    1. Materialize the reminders of a newborn
    2. Check the past vaccine has no reminder
    3. Materialize again
    4. Check there is no duplicate
    """
    report = await materialize(
        baby_id=baby.baby_id,
        birth_date=baby.date_of_birth,
        now=now,
        recipient_id=baby.recipient_id,
        schedule=schedule,
        store=store,
    )
    # 4 upcoming vaccines, each with a weekly and a daily reminder
    assume(report.reminders_deleted == 0)
    assume(report.reminders_written == 8)

    reminders = await store.reminder_search_by_baby(baby.baby_id)
    assume(len(reminders) == 8)
    assume("BCG" not in {reminder.vaccine for reminder in reminders})
    for reminder in reminders:
        assume(reminder.trigger_at > now)
        assume(reminder.recipient_id == baby.recipient_id)
        assume(not reminder.sent)

    # Run again
    report = await materialize(
        baby_id=baby.baby_id,
        birth_date=baby.date_of_birth,
        now=now,
        recipient_id=baby.recipient_id,
        schedule=schedule,
        store=store,
    )
    assume(report.reminders_deleted == 8)
    assume(report.reminders_written == 8)
    again = await store.reminder_search_by_baby(baby.baby_id)
    assume(
        {reminder.reminder_id for reminder in again}
        == {reminder.reminder_id for reminder in reminders}
    )


@pytest.mark.asyncio(loop_scope="session")
async def test_materialize_chunks(
    baby: BabyModel,
    monkeypatch: pytest.MonkeyPatch,
    now: datetime,
    store: SqliteStore,
) -> None:
    """
    Test writes and deletes are split in batches of the store limit.
    """
    schedule = [
        ScheduleEntryModel(age="6 weeks", vaccine=f"Vaccine {i}") for i in range(30)
    ]

    upserts: list[int] = []
    deletes: list[int] = []
    upsert = store.reminder_batch_upsert
    delete = store.reminder_batch_delete

    async def _upsert_spy(reminders):
        upserts.append(len(reminders))
        await upsert(reminders)

    async def _delete_spy(reminders):
        deletes.append(len(reminders))
        await delete(reminders)

    monkeypatch.setattr(store, "reminder_batch_upsert", _upsert_spy)
    monkeypatch.setattr(store, "reminder_batch_delete", _delete_spy)

    for _ in range(2):
        await materialize(
            baby_id=baby.baby_id,
            birth_date=baby.date_of_birth,
            now=now,
            recipient_id=baby.recipient_id,
            schedule=schedule,
            store=store,
        )

    # 30 vaccines, each with a weekly and a daily reminder
    assume(upserts == [BATCH_MAX_ITEMS, BATCH_MAX_ITEMS, 10] * 2)
    assume(deletes == [BATCH_MAX_ITEMS, BATCH_MAX_ITEMS, 10])
    assume(len(await store.reminder_search_by_baby(baby.baby_id)) == 60)


@pytest.mark.asyncio(loop_scope="session")
async def test_store_batch_limit(
    now: datetime,
    store: SqliteStore,
) -> None:
    """
    Test the store refuses batches above its limit.
    """
    reminders = [
        ReminderModel(
            baby_id="baby-1",
            cadence=CadenceEnum.DAILY,
            recipient_id="recipient-1",
            trigger_at=now + timedelta(days=i),
            vaccination_date=now + timedelta(days=i + 1),
            vaccine="BCG",
        )
        for i in range(BATCH_MAX_ITEMS + 1)
    ]
    with pytest.raises(ValueError):
        await store.reminder_batch_upsert(reminders)
    with pytest.raises(ValueError):
        await store.reminder_batch_delete(reminders)


@pytest.mark.asyncio(loop_scope="session")
async def test_materialize_batch_failure(
    baby: BabyModel,
    monkeypatch: pytest.MonkeyPatch,
    now: datetime,
    schedule: list[ScheduleEntryModel],
    store: SqliteStore,
) -> None:
    """
    Test a failed batch stops the regeneration, the batches already applied stay.
    """
    monkeypatch.setattr(CONFIG.reminder, "batch_size", 2)

    calls: list[int] = []
    upsert = store.reminder_batch_upsert

    async def _failing_upsert(reminders):
        calls.append(len(reminders))
        if len(calls) == 2:
            raise ReminderBatchError("Simulated failure")
        await upsert(reminders)

    monkeypatch.setattr(store, "reminder_batch_upsert", _failing_upsert)

    with pytest.raises(ReminderBatchError):
        await materialize(
            baby_id=baby.baby_id,
            birth_date=baby.date_of_birth,
            now=now,
            recipient_id=baby.recipient_id,
            schedule=schedule,
            store=store,
        )

    # Aborted at the second batch, remaining batches not attempted
    assume(calls == [2, 2])
    assume(len(await store.reminder_search_by_baby(baby.baby_id)) == 2)


@pytest.mark.asyncio(loop_scope="session")
async def test_regenerate_keeps_sent(
    baby: BabyModel,
    now: datetime,
    schedule: list[ScheduleEntryModel],
    store: SqliteStore,
) -> None:
    """
    Test a date of birth correction replaces the unsent reminders only.

    Steps:
    1. Create the reminders of a baby
    2. Mark one as sent
    3. Correct the date of birth by 3 days
    4. Check the sent reminder is untouched and the others follow the new date
    """
    await store.schedule_replace(schedule)
    await store.baby_create(baby)
    await schedule_new_baby(baby=baby, now=now, store=store)

    first = await store.reminder_search_by_baby(baby.baby_id)
    sent = first[0]
    await store.reminder_mark_sent(sent)

    # Correct the date of birth
    corrected = baby.model_copy(
        update={"date_of_birth": baby.date_of_birth + timedelta(days=3)}
    )
    await store.baby_create(corrected)
    report = await regenerate_for_baby(
        baby_id=baby.baby_id,
        now=now,
        store=store,
    )
    assume(report.reminders_deleted == len(first) - 1)
    # Born after now, BCG gets a daily reminder too
    assume(report.reminders_written == 9)

    reminders = await store.reminder_search_by_baby(baby.baby_id)
    kept = [reminder for reminder in reminders if reminder.sent]
    assume(len(kept) == 1)
    assume(kept[0].reminder_id == sent.reminder_id)
    assume(kept[0].trigger_at == sent.trigger_at)

    unsent = [reminder for reminder in reminders if not reminder.sent]
    assume(len(unsent) == 9)
    old_ids = {reminder.reminder_id for reminder in first}
    for reminder in unsent:
        assume(reminder.reminder_id not in old_ids)


@pytest.mark.asyncio(loop_scope="session")
async def test_regenerate_unknown_baby(
    now: datetime,
    random_text: str,
    store: SqliteStore,
) -> None:
    with pytest.raises(BabyNotFoundError):
        await regenerate_for_baby(
            baby_id=random_text,
            now=now,
            store=store,
        )
