from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid5

from pydantic import BaseModel, Field, computed_field

# Namespace of the reminder identities, never change it or every reminder will be duplicated at the next regeneration
REMINDER_NAMESPACE = UUID("6f1c1a52-0c5e-4c4b-9a53-4a0d2f8e7b31")


class CadenceEnum(str, Enum):
    DAILY = "daily"
    """Sent the day before the vaccination."""
    WEEKLY = "weekly"
    """Sent a week before the vaccination."""


class ReminderCandidateModel(BaseModel, frozen=True):
    """
    A reminder projected from the schedule, not persisted yet.
    """

    cadence: CadenceEnum
    trigger_at: datetime
    vaccination_date: datetime
    vaccine: str


class ReminderModel(BaseModel):
    # Immutable fields
    baby_id: str = Field(frozen=True)
    cadence: CadenceEnum = Field(frozen=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    recipient_id: str = Field(frozen=True)
    trigger_at: datetime = Field(frozen=True)
    vaccination_date: datetime = Field(frozen=True)
    vaccine: str = Field(frozen=True)
    # Editable fields
    sent: bool = False

    @computed_field
    @property
    def reminder_id(self) -> UUID:
        """
        Deterministic identity of the reminder.

        Derived from the baby, the vaccine, the cadence and the trigger day. Writing the same reminder twice overwrites it.
        """
        return reminder_id(
            baby_id=self.baby_id,
            cadence=self.cadence,
            trigger_at=self.trigger_at,
            vaccine=self.vaccine,
        )

    @classmethod
    def from_candidate(
        cls,
        baby_id: str,
        candidate: ReminderCandidateModel,
        recipient_id: str,
    ) -> "ReminderModel":
        return cls(
            baby_id=baby_id,
            cadence=candidate.cadence,
            recipient_id=recipient_id,
            trigger_at=candidate.trigger_at,
            vaccination_date=candidate.vaccination_date,
            vaccine=candidate.vaccine,
        )


def reminder_id(
    baby_id: str,
    cadence: CadenceEnum,
    trigger_at: datetime,
    vaccine: str,
) -> UUID:
    key = f"{baby_id}#{vaccine}#{cadence.value}#{trigger_at.date().isoformat()}"
    return uuid5(REMINDER_NAMESPACE, key)
