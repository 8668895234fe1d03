from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from pytest_assume.plugin import assume

from chanjo.helpers.config import CONFIG
from chanjo.main import api
from chanjo.models.baby import BabyModel
from chanjo.models.readiness import ReadinessEnum, ReadinessModel


@pytest.fixture
def client() -> TestClient:
    # Without the context manager, the lifespan and its processors do not start
    return TestClient(api)


def test_readiness_aggregate() -> None:
    """
    Test the readiness fails as soon as one backend fails.
    """
    ok = ReadinessModel.from_checks(cache=ReadinessEnum.OK, store=ReadinessEnum.OK)
    assume(ok.status == ReadinessEnum.OK)
    assume([check.id for check in ok.checks] == ["cache", "store"])

    fail = ReadinessModel.from_checks(cache=ReadinessEnum.OK, store=ReadinessEnum.FAIL)
    assume(fail.status == ReadinessEnum.FAIL)


def test_liveness(client: TestClient) -> None:
    res = client.get("/health/liveness")
    assume(res.status_code == HTTPStatus.OK)


def test_unknown_baby(client: TestClient, random_text: str) -> None:
    """
    Test an unknown baby is reported in the standard error format.
    """
    res = client.post(f"/baby/{random_text}/reminders")
    assume(res.status_code == HTTPStatus.NOT_FOUND)
    assume(random_text in res.json()["error"]["message"])

    res = client.get(f"/baby/{random_text}/administered")
    assume(res.status_code == HTTPStatus.NOT_FOUND)

    res = client.get(f"/baby/{random_text}/reminders")
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json() == [])


def test_process_unknown_cadence(client: TestClient) -> None:
    res = client.post("/reminders/monthly/process")
    assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)
    assume(res.json()["error"]["message"] == "Validation error")


def test_liveness_processor_stopped(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    Test the liveness fails once a reminder processor is no longer running.
    """

    class _StoppedTask:
        def done(self) -> bool:
            return True

        def get_name(self) -> str:
            return "processor-daily"

    monkeypatch.setattr(api.state, "processor_tasks", [_StoppedTask()], raising=False)
    res = client.get("/health/liveness")
    assume(res.status_code == HTTPStatus.SERVICE_UNAVAILABLE)
    assume(res.json()["error"]["details"] == ["processor-daily"])


@pytest.mark.asyncio(loop_scope="session")
async def test_administered_mark_source(baby: BabyModel) -> None:
    """
    Test the source of a mark is kept, and defaults to manual.

    Steps:
    1. Mark a vaccine as seeded by the system
    2. Mark another one without source
    3. Mark the first one again
    4. Check the list keeps both sources and has no duplicate
    """
    await CONFIG.database.instance.baby_create(baby)

    async with AsyncClient(
        base_url="http://test",
        transport=ASGITransport(app=api),
    ) as client:
        res = await client.post(
            f"/baby/{baby.baby_id}/administered",
            json={"date": "2024-01-01", "source": "system", "vaccine": "BCG"},
        )
        assume(res.status_code == HTTPStatus.CREATED)

        res = await client.post(
            f"/baby/{baby.baby_id}/administered",
            json={"date": "2024-02-12", "vaccine": "Pentavalent 1"},
        )
        assume(res.status_code == HTTPStatus.CREATED)

        # Already marked
        res = await client.post(
            f"/baby/{baby.baby_id}/administered",
            json={"date": "2024-01-01", "source": "manual", "vaccine": "BCG"},
        )
        assume(res.status_code == HTTPStatus.OK)
        assume(res.json() == {"created": False})

        res = await client.get(f"/baby/{baby.baby_id}/administered")
        sources = {entry["vaccine"]: entry["source"] for entry in res.json()}
        assume(len(res.json()) == 2)
        assume(sources == {"BCG": "system", "Pentavalent 1": "manual"})

        res = await client.post(
            f"/baby/{baby.baby_id}/administered",
            json={"date": "2024-01-01", "source": "nurse", "vaccine": "OPV"},
        )
        assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)
