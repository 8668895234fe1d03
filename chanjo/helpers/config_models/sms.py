from enum import Enum
from functools import cached_property

from pydantic import BaseModel, SecretStr, model_validator

from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber
from chanjo.persistence.isms import ISms


class ModeEnum(str, Enum):
    COMMUNICATION_SERVICES = "communication_services"
    """Azure Communication Services, for production."""
    TWILIO = "twilio"
    """Twilio, where Communication Services has no local number."""


class CommunicationServicesModel(BaseModel, frozen=True):
    access_key: SecretStr
    endpoint: str
    phone_number: PhoneNumber
    """Sender number, owned by the resource."""


class TwilioModel(BaseModel, frozen=True):
    account_sid: str
    auth_token: SecretStr
    phone_number: PhoneNumber
    """Sender number, owned by the account."""


class SmsModel(BaseModel):
    """
    Notification channel of the reminders.

    Only the backend selected by `mode` is required.
    """

    mode: ModeEnum = ModeEnum.COMMUNICATION_SERVICES
    communication_services: CommunicationServicesModel | None = None
    twilio: TwilioModel | None = None

    @model_validator(mode="after")
    def _validate_backend(self) -> "SmsModel":
        if getattr(self, self.mode.value) is None:
            raise ValueError(f"SMS mode is {self.mode.value}, its config is required")
        return self

    @cached_property
    def instance(self) -> ISms:
        if self.mode == ModeEnum.TWILIO:
            from chanjo.persistence.twilio import TwilioSms

            assert self.twilio
            return TwilioSms(self.twilio)

        from chanjo.persistence.communication_services import (
            CommunicationServicesSms,
        )

        assert self.communication_services
        return CommunicationServicesSms(self.communication_services)
