from azure.communication.sms import SmsSendResult
from azure.communication.sms.aio import SmsClient
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError, ServiceRequestError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from chanjo.helpers.cache import lru_acache
from chanjo.helpers.config_models.sms import CommunicationServicesModel
from chanjo.helpers.http import azure_transport
from chanjo.helpers.logging import logger
from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber
from chanjo.models.readiness import ReadinessEnum
from chanjo.persistence.isms import ISms


class CommunicationServicesSms(ISms):
    """
    Azure Communication Services SMS.

    Connection failures are retried, a message refused by the service is not.
    """

    _config: CommunicationServicesModel

    def __init__(self, config: CommunicationServicesModel):
        logger.info("Using Communication Services from number %s", config.phone_number)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the client can be built from the config.

        The service has no free read endpoint, a real send would be billed.
        """
        try:
            await self._use_client()
        except (AzureError, ValueError):
            logger.exception("Cannot build Communication Services client")
            return ReadinessEnum.FAIL
        return ReadinessEnum.OK

    async def send(self, content: str, phone_number: PhoneNumber) -> bool:
        logger.info("Sending SMS to %s, %i chars", phone_number, len(content))
        try:
            result = await self._send_once(content, phone_number)
        except AzureError:
            logger.exception("Communication Services refused SMS to %s", phone_number)
            return False

        if not result.successful:
            logger.warning(
                "SMS to %s failed with HTTP %s: %s",
                result.to,
                result.http_status_code,
                result.error_message,
            )
            return False

        logger.debug("SMS %s to %s accepted", result.message_id, result.to)
        return True

    @retry(
        reraise=True,
        retry=retry_if_exception_type(ServiceRequestError),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.8, max=8),
    )
    async def _send_once(
        self, content: str, phone_number: PhoneNumber
    ) -> SmsSendResult:
        client = await self._use_client()
        # One recipient, one result
        (result,) = await client.send(
            from_=str(self._config.phone_number),
            message=content,
            to=str(phone_number),
        )
        return result

    @lru_acache()
    async def _use_client(self) -> SmsClient:
        return SmsClient(
            credential=AzureKeyCredential(self._config.access_key.get_secret_value()),
            endpoint=self._config.endpoint,
            transport=await azure_transport(),
        )
