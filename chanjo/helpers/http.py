from aiohttp import (
    AsyncResolver,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    TCPConnector,
)
from aiohttp_retry import JitterRetry, RetryClient
from azure.core.pipeline.transport._aiohttp import AioHttpTransport
from twilio.http.async_http_client import AsyncTwilioHttpClient

from chanjo.helpers.cache import lru_acache
from chanjo.helpers.monitoring import MODULE_NAME, VERSION

# Upper bounds of a single provider call
_CONNECT_TIMEOUT_SEC = 5
_TOTAL_TIMEOUT_SEC = 60


@lru_acache()
async def aiohttp_session() -> ClientSession:
    """
    AIOHTTP session shared by the Azure and Twilio SDKs of the process.

    Closed by `close_http` at shutdown.
    """
    return ClientSession(
        # Same as the SDK defaults
        auto_decompress=False,
        cookie_jar=DummyCookieJar(),  # SDKs are stateless
        trust_env=True,
        # Identify the service in the provider logs
        headers={"User-Agent": f"{MODULE_NAME}/{VERSION}"},
        # Performance
        connector=TCPConnector(resolver=AsyncResolver()),
        # Reliability
        timeout=ClientTimeout(
            connect=_CONNECT_TIMEOUT_SEC,
            total=_TOTAL_TIMEOUT_SEC,
        ),
    )


@lru_acache()
async def azure_transport() -> AioHttpTransport:
    """
    Azure SDK transport over the shared session.

    Cosmos DB and Communication Services retry on their own, no retry is added here.
    """
    return AioHttpTransport(
        session_owner=False,  # The SDK must not close the shared session
        session=await aiohttp_session(),
    )


@lru_acache()
async def twilio_http() -> AsyncTwilioHttpClient:
    """
    Twilio HTTP client over the shared session, with jittered retries.
    """
    client = AsyncTwilioHttpClient(
        timeout=10,
    )
    # Twilio SDK has no retry, AIOHTTP does it
    client.session = RetryClient(
        client_session=await aiohttp_session(),
        retry_options=JitterRetry(
            attempts=3,
            max_timeout=8,
            start_timeout=0.8,
        ),
    )
    return client


async def close_http() -> None:
    """
    Close the shared AIOHTTP session, at process shutdown.
    """
    await (await aiohttp_session()).close()
