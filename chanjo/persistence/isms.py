from abc import ABC, abstractmethod

from chanjo.helpers.monitoring import start_as_current_span
from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber
from chanjo.models.readiness import ReadinessEnum


class ISms(ABC):
    """
    Notification sink.

    Delivery is fire-and-forget, `send` only tells if the provider accepted the message.
    """

    @abstractmethod
    @start_as_current_span("sms_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("sms_send")
    async def send(self, content: str, phone_number: PhoneNumber) -> bool:
        pass
