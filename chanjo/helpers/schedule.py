import re
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime, timedelta

from chanjo.helpers.logging import logger
from chanjo.models.reminder import CadenceEnum, ReminderCandidateModel
from chanjo.models.schedule import ScheduleEntryModel

# Calendar-naive, a month is always 30 days
_UNIT_DAYS = {
    "month": 30,
    "months": 30,
    "week": 7,
    "weeks": 7,
    "year": 365,
    "years": 365,
}
_RANGE_REGEX = re.compile(r"^(\d+)\s*[–-]\s*(\d+)\s*(\w+)$")
_SINGLE_REGEX = re.compile(r"^(\d+)\s*(\w+)$")

WEEKLY_LEAD = timedelta(days=7)
DAILY_LEAD = timedelta(days=1)


def naive_utc_now() -> datetime:
    """
    Current time as a naive UTC datetime, the reference clock of all schedule computations.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def parse_offset_days(age: str) -> float | None:
    """
    Parse an age expression into a number of days from birth.

    Understood forms are "birth", "<N> <unit>" and "<N1>-<N2> <unit>" (mean of the bounds). Returns `None` if the expression is not understood.
    """
    age = age.strip().lower()
    if age == "birth":
        return 0

    if match := _RANGE_REGEX.match(age):
        start, end, unit = match.groups()
        unit_days = _UNIT_DAYS.get(unit)
        if unit_days is None:
            return None
        return (int(start) + int(end)) / 2 * unit_days

    if match := _SINGLE_REGEX.match(age):
        count, unit = match.groups()
        unit_days = _UNIT_DAYS.get(unit)
        if unit_days is None:
            return None
        return int(count) * unit_days

    return None


def offset_days(age: str) -> float:
    """
    Days from birth of an age expression, `0` if not understood.

    Examples: "birth" is 0, "6 weeks" is 42, "2-4 months" is 90.
    """
    days = parse_offset_days(age)
    return days if days is not None else 0


def vaccination_date(birth_date: datetime, entry: ScheduleEntryModel) -> datetime:
    days = parse_offset_days(entry.age)
    if days is None:
        logger.warning(
            'Cannot parse age "%s" of %s, using the date of birth',
            entry.age,
            entry.vaccine,
        )
        days = 0
    return birth_date + timedelta(days=days)


def project(
    birth_date: datetime,
    schedule: Iterable[ScheduleEntryModel],
    now: datetime,
    hour: int,
) -> Iterator[ReminderCandidateModel]:
    """
    Project the schedule on a date of birth, yielding the reminders still to come.

    For each vaccine not yet due, a weekly reminder is yielded 7 days before if the vaccination is at least 7 days away, then a daily reminder the day before. Reminders are triggered at `hour` o'clock. Only triggers strictly after `now` are yielded.
    """
    for entry in schedule:
        vaccinated_at = vaccination_date(birth_date, entry)

        # Past-due vaccines are the administered tracker's concern
        if vaccinated_at <= now:
            continue

        diff_days = (vaccinated_at - now) / timedelta(days=1)

        if diff_days >= 7:
            weekly_at = _at_hour(vaccinated_at - WEEKLY_LEAD, hour)
            if weekly_at > now:
                yield ReminderCandidateModel(
                    cadence=CadenceEnum.WEEKLY,
                    trigger_at=weekly_at,
                    vaccination_date=vaccinated_at,
                    vaccine=entry.vaccine,
                )

        daily_at = _at_hour(vaccinated_at - DAILY_LEAD, hour)
        if daily_at > now:
            yield ReminderCandidateModel(
                cadence=CadenceEnum.DAILY,
                trigger_at=daily_at,
                vaccination_date=vaccinated_at,
                vaccine=entry.vaccine,
            )


def _at_hour(value: datetime, hour: int) -> datetime:
    return value.replace(hour=hour, minute=0, second=0, microsecond=0)
