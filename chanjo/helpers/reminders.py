from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime
from typing import TypeVar

from chanjo.helpers.config import CONFIG
from chanjo.helpers.logging import logger
from chanjo.helpers.monitoring import (
    SpanAttributeEnum,
    SpanMeterEnum,
    counter_add,
    start_as_current_span,
)
from chanjo.helpers.schedule import project
from chanjo.models.baby import BabyModel
from chanjo.models.dispatch import MaterializeReportModel
from chanjo.models.reminder import ReminderModel
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.istore import BabyNotFoundError, IStore, ReminderBatchError

T = TypeVar("T")


def chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """
    Split a sequence into consecutive slices of at most `size` items.
    """
    for i in range(0, len(items), size):
        yield items[i : i + size]


def build_reminders(
    baby_id: str,
    recipient_id: str,
    birth_date: datetime,
    schedule: Iterable[ScheduleEntryModel],
    now: datetime,
) -> list[ReminderModel]:
    """
    Project the schedule into persisted reminders.

    Candidates sharing an identity (same vaccine listed twice, for example) are written once.
    """
    reminders: dict[str, ReminderModel] = {}
    for candidate in project(
        birth_date=birth_date,
        hour=CONFIG.reminder.hour,
        now=now,
        schedule=schedule,
    ):
        reminder = ReminderModel.from_candidate(
            baby_id=baby_id,
            candidate=candidate,
            recipient_id=recipient_id,
        )
        reminders.setdefault(str(reminder.reminder_id), reminder)
    return list(reminders.values())


@start_as_current_span("reminder_materialize")
async def materialize(  # noqa: PLR0913
    baby_id: str,
    recipient_id: str,
    birth_date: datetime,
    schedule: Sequence[ScheduleEntryModel],
    now: datetime,
    store: IStore,
    future_only: bool = False,
) -> MaterializeReportModel:
    """
    Regenerate the reminders of a baby.

    Steps:
    1. Delete the unsent reminders of the baby, only those triggered after `now` if `future_only`
    2. Project the schedule on the date of birth
    3. Write the projected reminders

    Writes are chunked to the store batch limit. A failed chunk stops the regeneration and raises `ReminderBatchError`, the chunks already applied stay. Running it again is safe, identities are deterministic.
    """
    SpanAttributeEnum.BABY_ID.attribute(baby_id)
    SpanAttributeEnum.RECIPIENT_ID.attribute(recipient_id)
    report = MaterializeReportModel(baby_id=baby_id)
    batch_size = CONFIG.reminder.batch_size

    # Clear the previous generation, sent reminders are history and stay
    stale = await store.reminder_search_unsent(
        after=now if future_only else None,
        baby_id=baby_id,
    )
    logger.debug("Deleting %s unsent reminders", len(stale))
    try:
        for chunk in chunks(stale, batch_size):
            await store.reminder_batch_delete(chunk)
            report.reminders_deleted += len(chunk)
    except ReminderBatchError:
        logger.exception(
            "Regeneration aborted while deleting, %s of %s reminders deleted",
            report.reminders_deleted,
            len(stale),
        )
        raise

    # Write the new generation
    reminders = build_reminders(
        baby_id=baby_id,
        birth_date=birth_date,
        now=now,
        recipient_id=recipient_id,
        schedule=schedule,
    )
    SpanAttributeEnum.REMINDER_COUNT.attribute(len(reminders))
    try:
        for chunk in chunks(reminders, batch_size):
            await store.reminder_batch_upsert(chunk)
            report.reminders_written += len(chunk)
            counter_add(SpanMeterEnum.REMINDER_MATERIALIZED, len(chunk))
    except ReminderBatchError:
        logger.exception(
            "Regeneration aborted while writing, %s of %s reminders written",
            report.reminders_written,
            len(reminders),
        )
        raise

    logger.info(
        "Reminders regenerated, %s deleted, %s written",
        report.reminders_deleted,
        report.reminders_written,
    )
    return report


async def schedule_new_baby(
    baby: BabyModel,
    now: datetime,
    store: IStore,
) -> MaterializeReportModel:
    """
    Create the reminders of a newly registered baby.
    """
    return await materialize(
        baby_id=baby.baby_id,
        birth_date=baby.date_of_birth,
        now=now,
        recipient_id=baby.recipient_id,
        schedule=await store.schedule_get(),
        store=store,
    )


async def regenerate_for_baby(
    baby_id: str,
    now: datetime,
    store: IStore,
) -> MaterializeReportModel:
    """
    Regenerate the reminders of a baby after its date of birth changed.

    Only reminders still to come are replaced. Raises `BabyNotFoundError` if the baby does not exist.
    """
    baby = await store.baby_get(baby_id)
    if not baby:
        raise BabyNotFoundError(baby_id)
    return await materialize(
        baby_id=baby.baby_id,
        birth_date=baby.date_of_birth,
        future_only=True,
        now=now,
        recipient_id=baby.recipient_id,
        schedule=await store.schedule_get(),
        store=store,
    )
