"""
Factory for Azure service clients and buckets.
"""

from enum import Enum

import structlog
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob.aio import BlobServiceClient
from pydantic import BaseModel

from blobkit.storage.azure_blob import AzureBlobBucket, open_bucket
from blobkit.storage.errors import InvalidArgumentError
from blobkit.utils.env_config import DEFAULT_STORAGE_DOMAIN, AzureStorageSettings, ServiceURLOptions, get_settings

logger = structlog.get_logger(__name__)

USER_AGENT = "blobkit/0.1.0"


def new_service_url(opts: ServiceURLOptions | None = None) -> str:
    """
    Build the URL of an Azure Blob service account.

    The URL is "<protocol>://<account>.<domain>", except that:
      - the local emulator (or a domain starting with "localhost" or
        "127.0.0.1") flips account and domain: http://127.0.0.1:10000/myaccount
      - a CDN domain drops the account name
      - a SAS token is appended as the query string
    """
    opts = opts or ServiceURLOptions()
    if not opts.account_name:
        raise InvalidArgumentError("azureblob: account name is required")
    domain = opts.storage_domain or DEFAULT_STORAGE_DOMAIN
    protocol = opts.protocol or "https"
    if protocol not in ("http", "https"):
        raise InvalidArgumentError(f"invalid protocol {protocol!r}")

    if domain.startswith(("127.0.0.1", "localhost")) or opts.is_local_emulator:
        svc_url = f"{protocol}://{domain}/{opts.account_name}"
    elif opts.is_cdn:
        svc_url = f"{protocol}://{domain}"
    else:
        svc_url = f"{protocol}://{opts.account_name}.{domain}"
    if opts.sas_token:
        svc_url += "?" + opts.sas_token.lstrip("?")
    logger.info("Constructed service URL", url=svc_url.split("?", 1)[0], has_sas=bool(opts.sas_token))
    return svc_url


class CredentialType(str, Enum):
    """Kinds of credentials the client factory can use."""

    SHARED_KEY = "shared_key"
    SAS_TOKEN = "sas_token"
    CONNECTION_STRING = "connection_string"
    IDENTITY = "identity"


class CredentialInfo(BaseModel):
    cred_type: CredentialType
    account_name: str | None = None
    account_key: str | None = None
    connection_string: str | None = None


def credential_info_from_settings(settings: AzureStorageSettings) -> CredentialInfo:
    """Pick the credential kind; shared key wins, then SAS, then connection string."""
    if settings.account and settings.key:
        return CredentialInfo(
            cred_type=CredentialType.SHARED_KEY,
            account_name=settings.account,
            account_key=settings.key,
        )
    if settings.sas_token:
        return CredentialInfo(cred_type=CredentialType.SAS_TOKEN, account_name=settings.account)
    if settings.connection_string:
        return CredentialInfo(
            cred_type=CredentialType.CONNECTION_STRING,
            account_name=settings.account,
            connection_string=settings.connection_string,
        )
    return CredentialInfo(cred_type=CredentialType.IDENTITY, account_name=settings.account)


def _build_service_client(
    settings: AzureStorageSettings | None,
) -> tuple[BlobServiceClient, DefaultAzureCredential | None]:
    settings = settings or get_settings()
    info = credential_info_from_settings(settings)
    logger.info("Creating Azure service client", credential_type=info.cred_type.value)

    if info.cred_type == CredentialType.CONNECTION_STRING:
        return BlobServiceClient.from_connection_string(info.connection_string, user_agent=USER_AGENT), None

    svc_url = new_service_url(settings.service_url_options())
    if info.cred_type == CredentialType.SHARED_KEY:
        credential = {"account_name": info.account_name, "account_key": info.account_key}
        return BlobServiceClient(svc_url, credential=credential, user_agent=USER_AGENT), None
    if info.cred_type == CredentialType.SAS_TOKEN:
        # The SAS token is already part of the service URL.
        return BlobServiceClient(svc_url, user_agent=USER_AGENT), None
    token_credential = DefaultAzureCredential()
    return BlobServiceClient(svc_url, credential=token_credential, user_agent=USER_AGENT), token_credential


def create_service_client(settings: AzureStorageSettings | None = None) -> BlobServiceClient:
    """
    Create a service client using credentials from settings.

    With the identity credential the caller owns the credential too and closes
    it through ``client.credential``; create_bucket does that automatically.
    """
    service_client, _ = _build_service_client(settings)
    return service_client


def create_bucket(container_name: str, settings: AzureStorageSettings | None = None) -> AzureBlobBucket:
    """Create a bucket for ``container_name`` that owns its service client and credential."""
    service_client, token_credential = _build_service_client(settings)
    return open_bucket(service_client, container_name, close_service_client=True, credential=token_credential)
