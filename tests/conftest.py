import json
from datetime import datetime
from os import environ
from pathlib import Path
from tempfile import mkdtemp
from uuid import uuid4

# Config must be set before the app is imported, it is loaded at import
environ["CONFIG_JSON"] = json.dumps(
    {
        "database": {
            "mode": "sqlite",
            "sqlite": {
                "path": str(Path(mkdtemp()) / "chanjo"),
            },
        },
        "monitoring": {
            "logging": {
                "app_level": "DEBUG",
            },
        },
        "sms": {
            "mode": "twilio",
            "twilio": {
                "account_sid": "dummy",
                "auth_token": "dummy",
                "phone_number": "+33612345678",
            },
        },
    }
)

import pytest  # noqa: E402

from chanjo.helpers.config_models.cache import CacheModel  # noqa: E402
from chanjo.helpers.config_models.database import SqliteModel  # noqa: E402
from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber  # noqa: E402
from chanjo.models.baby import BabyModel  # noqa: E402
from chanjo.models.readiness import ReadinessEnum  # noqa: E402
from chanjo.models.recipient import RecipientModel  # noqa: E402
from chanjo.models.schedule import ScheduleEntryModel  # noqa: E402
from chanjo.persistence.isms import ISms  # noqa: E402
from chanjo.persistence.memory import MemoryCache  # noqa: E402
from chanjo.persistence.sqlite import SqliteStore  # noqa: E402

# Mid-day, so that the schedule hour does not fall on the same instant
NOW = datetime(2024, 1, 1, 12)


class SmsMock(ISms):
    """
    Records the sent messages instead of sending them.

    Numbers in `failing` are refused by the provider, numbers in `raising` break the transport.
    """

    failing: set[str]
    raising: set[str]
    sent: list[tuple[str, str]]

    def __init__(self) -> None:
        self.failing = set()
        self.raising = set()
        self.sent = []

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(self, content: str, phone_number: PhoneNumber) -> bool:
        if phone_number in self.raising:
            raise ConnectionError(f"Cannot reach the provider for {phone_number}")
        if phone_number in self.failing:
            return False
        self.sent.append((phone_number, content))
        return True


@pytest.fixture
def random_text() -> str:
    return str(uuid4())


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sms() -> SmsMock:
    return SmsMock()


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    """
    Empty store, with its own database and cache.
    """
    return SqliteStore(
        cache=MemoryCache(CacheModel()),
        cache_config=CacheModel(),
        config=SqliteModel(path=str(tmp_path / "chanjo")),
    )


@pytest.fixture
def schedule() -> list[ScheduleEntryModel]:
    return [
        ScheduleEntryModel(age="birth", vaccine="BCG"),
        ScheduleEntryModel(age="6 weeks", vaccine="Pentavalent 1"),
        ScheduleEntryModel(age="6 weeks", vaccine="Rotavirus 1"),
        ScheduleEntryModel(age="10 weeks", vaccine="Pentavalent 2"),
        ScheduleEntryModel(age="9 months", vaccine="Measles-Rubella 1"),
    ]


@pytest.fixture
def recipient(random_text: str) -> RecipientModel:
    return RecipientModel(
        full_name="Jane Wanjiru",
        phone_number="+33612345679",  # pyright: ignore
        recipient_id=f"recipient-{random_text}",
    )


@pytest.fixture
def baby(
    now: datetime,
    random_text: str,
    recipient: RecipientModel,
) -> BabyModel:
    """
    Baby born at midnight, the day of `now`.
    """
    return BabyModel(
        baby_id=f"baby-{random_text}",
        date_of_birth=now.replace(hour=0),
        full_name="Amani",
        recipient_id=recipient.recipient_id,
    )
