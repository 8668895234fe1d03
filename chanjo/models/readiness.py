from enum import Enum

from pydantic import BaseModel


class ReadinessEnum(str, Enum):
    FAIL = "fail"
    """The backend cannot serve requests."""
    OK = "ok"
    """The backend is ready."""


class ReadinessCheckModel(BaseModel):
    id: str
    status: ReadinessEnum


class ReadinessModel(BaseModel):
    checks: list[ReadinessCheckModel]
    status: ReadinessEnum

    @classmethod
    def from_checks(cls, **checks: ReadinessEnum) -> "ReadinessModel":
        """
        Aggregate backend checks, the service is ready only if all of them are.
        """
        return cls(
            checks=[
                ReadinessCheckModel(id=check_id, status=status)
                for check_id, status in checks.items()
            ],
            status=ReadinessEnum.OK
            if all(status == ReadinessEnum.OK for status in checks.values())
            else ReadinessEnum.FAIL,
        )
