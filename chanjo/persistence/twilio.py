from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from chanjo.helpers.cache import lru_acache
from chanjo.helpers.config_models.sms import TwilioModel
from chanjo.helpers.http import twilio_http
from chanjo.helpers.logging import logger
from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber
from chanjo.models.readiness import ReadinessEnum
from chanjo.persistence.isms import ISms

# Message states where Twilio already gave up
_FAILED_STATUSES = {"canceled", "failed", "undelivered"}


class TwilioSms(ISms):
    """
    Twilio Programmable Messaging.

    A message is sent once the API accepted it; delivery happens later and is not followed.
    """

    _config: TwilioModel

    def __init__(self, config: TwilioModel):
        logger.info("Using Twilio from number %s", config.phone_number)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the account is reachable and active.

        Nothing is sent, a suspended or closed account fails the check.
        """
        try:
            client = await self._use_client()
            account = await client.api.accounts(self._config.account_sid).fetch_async()
        except TwilioException:
            logger.exception("Error requesting Twilio account")
            return ReadinessEnum.FAIL
        if account.status != "active":
            logger.error("Twilio account is %s", account.status)
            return ReadinessEnum.FAIL
        return ReadinessEnum.OK

    async def send(self, content: str, phone_number: PhoneNumber) -> bool:
        logger.info("Sending SMS to %s, %i chars", phone_number, len(content))
        client = await self._use_client()
        try:
            message = await client.messages.create_async(
                body=content,
                from_=str(self._config.phone_number),
                to=str(phone_number),
            )
        except TwilioRestException as e:
            logger.warning(
                "Twilio refused SMS to %s, code %s: %s", phone_number, e.code, e.msg
            )
            return False

        if message.status in _FAILED_STATUSES or message.error_code:
            logger.warning(
                "SMS %s to %s is %s, code %s",
                message.sid,
                phone_number,
                message.status,
                message.error_code,
            )
            return False

        logger.debug("SMS %s to %s is %s", message.sid, phone_number, message.status)
        return True

    @lru_acache()
    async def _use_client(self) -> Client:
        return Client(
            http_client=await twilio_http(),
            password=self._config.auth_token.get_secret_value(),
            username=self._config.account_sid,
        )
