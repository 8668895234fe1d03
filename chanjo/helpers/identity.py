from azure.identity.aio import DefaultAzureCredential

from chanjo.helpers.cache import lru_acache
from chanjo.helpers.http import azure_transport


@lru_acache()
async def credential() -> DefaultAzureCredential:
    """
    Azure credential of the process, managed identity in the cloud or the developer login locally.
    """
    return DefaultAzureCredential(
        # Performance
        transport=await azure_transport(),
    )
