from collections.abc import Sequence
from datetime import date, datetime

from chanjo.helpers.logging import logger
from chanjo.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from chanjo.helpers.schedule import vaccination_date
from chanjo.models.baby import AdministeredEntryModel, AdministeredSourceEnum
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.istore import BabyNotFoundError, IStore


async def administered_list(
    baby_id: str,
    store: IStore,
) -> list[AdministeredEntryModel]:
    """
    Vaccines marked as administered to a baby.

    Raises `BabyNotFoundError` if the baby does not exist.
    """
    baby = await store.baby_get(baby_id)
    if not baby:
        raise BabyNotFoundError(baby_id)
    return baby.administered


@start_as_current_span("administered_mark")
async def mark_administered(
    baby_id: str,
    vaccine: str,
    day: date,
    store: IStore,
    source: AdministeredSourceEnum = AdministeredSourceEnum.MANUAL,
) -> bool:
    """
    Mark a vaccine as administered on a day.

    Returns `False` if the same vaccine is already marked for the same day, nothing is written then. Raises `BabyNotFoundError` if the baby does not exist.
    """
    SpanAttributeEnum.BABY_ID.attribute(baby_id)
    current = await administered_list(baby_id=baby_id, store=store)
    if any(entry.same_as(vaccine, day) for entry in current):
        logger.info("%s already marked on %s", vaccine, day)
        return False

    await store.baby_administered_append(
        baby_id=baby_id,
        entries=[
            AdministeredEntryModel(
                date=day,
                source=source,
                vaccine=vaccine,
            )
        ],
    )
    logger.info("%s marked as administered on %s", vaccine, day)
    return True


@start_as_current_span("administered_init")
async def init_administered(
    baby_id: str,
    schedule: Sequence[ScheduleEntryModel],
    now: datetime,
    store: IStore,
) -> list[AdministeredEntryModel]:
    """
    Seed the administered list with the vaccines due before `now`.

    Used when a baby is registered after birth, so past vaccines are not reminded. Entries already present are skipped. Returns the appended entries.
    """
    SpanAttributeEnum.BABY_ID.attribute(baby_id)
    baby = await store.baby_get(baby_id)
    if not baby:
        raise BabyNotFoundError(baby_id)

    entries: list[AdministeredEntryModel] = []
    for schedule_entry in schedule:
        vaccinated_at = vaccination_date(baby.date_of_birth, schedule_entry)
        if vaccinated_at >= now:
            continue
        day = vaccinated_at.date()
        if any(
            entry.same_as(schedule_entry.vaccine, day)
            for entry in [*baby.administered, *entries]
        ):
            continue
        entries.append(
            AdministeredEntryModel(
                date=day,
                source=AdministeredSourceEnum.SYSTEM,
                vaccine=schedule_entry.vaccine,
            )
        )

    if entries:
        await store.baby_administered_append(baby_id=baby_id, entries=entries)
    logger.info("%s past vaccines seeded as administered", len(entries))
    return entries
