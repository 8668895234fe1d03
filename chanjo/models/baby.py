import datetime as dt
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


class AdministeredSourceEnum(str, Enum):
    MANUAL = "manual"
    """Marked by the guardian."""
    SYSTEM = "system"
    """Seeded from the schedule, for vaccines due before the baby was registered."""


class AdministeredEntryModel(BaseModel):
    # Immutable fields
    id: UUID = Field(default_factory=uuid4, frozen=True)
    marked_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.UTC), frozen=True
    )
    # Editable fields
    date: dt.date
    source: AdministeredSourceEnum = AdministeredSourceEnum.MANUAL
    vaccine: str

    def same_as(self, vaccine: str, day: dt.date) -> bool:
        return self.vaccine == vaccine and self.date == day


class BabyModel(BaseModel):
    # Immutable fields
    baby_id: str = Field(frozen=True)
    recipient_id: str = Field(frozen=True)
    # Editable fields
    administered: list[AdministeredEntryModel] = []
    date_of_birth: dt.datetime
    full_name: str | None = None

    @field_validator("date_of_birth")
    @classmethod
    def _validate_date_of_birth(cls, date_of_birth: dt.datetime) -> dt.datetime:
        """
        Store dates of birth as naive UTC datetimes.

        Schedule computations are calendar-naive, mixing aware and naive values would fail at comparison.
        """
        if date_of_birth.tzinfo:
            return date_of_birth.astimezone(dt.UTC).replace(tzinfo=None)
        return date_of_birth


class AdministeredMarkModel(BaseModel):
    """
    Request to mark a vaccine as administered.
    """

    date: dt.date
    vaccine: str
    source: AdministeredSourceEnum = AdministeredSourceEnum.MANUAL
