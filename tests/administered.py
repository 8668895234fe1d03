from datetime import date, datetime

import pytest
from pytest_assume.plugin import assume

from chanjo.helpers.administered import (
    administered_list,
    init_administered,
    mark_administered,
)
from chanjo.models.baby import AdministeredSourceEnum, BabyModel
from chanjo.models.schedule import ScheduleEntryModel
from chanjo.persistence.istore import BabyNotFoundError
from chanjo.persistence.sqlite import SqliteStore


@pytest.mark.asyncio(loop_scope="session")
async def test_mark_idempotent(
    baby: BabyModel,
    store: SqliteStore,
) -> None:
    """
    Test marking the same vaccine the same day twice only writes once.

    Steps:
    1. Mark a vaccine
    2. Mark it again the same day
    3. Mark it another day
    4. Check two entries exist
    """
    await store.baby_create(baby)

    assume(
        await mark_administered(
            baby_id=baby.baby_id,
            day=date(2024, 2, 12),
            store=store,
            vaccine="Pentavalent 1",
        )
    )
    assume(
        not await mark_administered(
            baby_id=baby.baby_id,
            day=date(2024, 2, 12),
            store=store,
            vaccine="Pentavalent 1",
        )
    )
    assume(
        await mark_administered(
            baby_id=baby.baby_id,
            day=date(2024, 2, 13),
            store=store,
            vaccine="Pentavalent 1",
        )
    )

    entries = await administered_list(baby_id=baby.baby_id, store=store)
    assume(len(entries) == 2)
    assume(len({entry.id for entry in entries}) == 2)
    for entry in entries:
        assume(entry.source == AdministeredSourceEnum.MANUAL)
        assume(entry.vaccine == "Pentavalent 1")


@pytest.mark.asyncio(loop_scope="session")
async def test_mark_unknown_baby(
    random_text: str,
    store: SqliteStore,
) -> None:
    with pytest.raises(BabyNotFoundError):
        await mark_administered(
            baby_id=random_text,
            day=date(2024, 2, 12),
            store=store,
            vaccine="BCG",
        )
    with pytest.raises(BabyNotFoundError):
        await administered_list(baby_id=random_text, store=store)


@pytest.mark.asyncio(loop_scope="session")
async def test_init_administered(
    baby: BabyModel,
    schedule: list[ScheduleEntryModel],
    store: SqliteStore,
) -> None:
    """
    Test the vaccines due before now are seeded once, skipping those already marked.

    Steps:
    1. Mark BCG manually
    2. Initialize two months after birth
    3. Check the 6 weeks vaccines are seeded, BCG and later vaccines are not
    4. Initialize again, check nothing is added
    """
    await store.baby_create(baby)
    await mark_administered(
        baby_id=baby.baby_id,
        day=baby.date_of_birth.date(),
        store=store,
        vaccine="BCG",
    )

    now = datetime(2024, 3, 1)
    entries = await init_administered(
        baby_id=baby.baby_id,
        now=now,
        schedule=schedule,
        store=store,
    )
    assume({entry.vaccine for entry in entries} == {"Pentavalent 1", "Rotavirus 1"})
    for entry in entries:
        assume(entry.source == AdministeredSourceEnum.SYSTEM)
        assume(entry.date == date(2024, 2, 12))

    assume(len(await administered_list(baby_id=baby.baby_id, store=store)) == 3)

    # Run again
    assume(
        not await init_administered(
            baby_id=baby.baby_id,
            now=now,
            schedule=schedule,
            store=store,
        )
    )
    assume(len(await administered_list(baby_id=baby.baby_id, store=store)) == 3)
