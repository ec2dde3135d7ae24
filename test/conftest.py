from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from blobkit.storage.azure_blob import AzureBlobBucket
from blobkit.utils.env_config import reset_settings

ENV_VARS = [
    "AZURE_STORAGE_ACCOUNT",
    "AZURE_STORAGE_KEY",
    "AZURE_STORAGE_SAS_TOKEN",
    "AZURE_STORAGE_CONNECTION_STRING",
    "AZURE_STORAGE_DOMAIN",
    "AZURE_STORAGE_PROTOCOL",
    "AZURE_STORAGE_IS_CDN",
    "AZURE_STORAGE_IS_LOCAL_EMULATOR",
    "AZURE_STORAGE_LOG_LEVEL",
    "AZURE_STORAGE_LOG_JSON",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def mock_logger(mocker: Any) -> MagicMock:
    return mocker.patch.object(structlog, "get_logger", return_value=MagicMock())


@pytest.fixture
def blob_client() -> MagicMock:
    blob = MagicMock()
    blob.url = "https://myaccount.blob.core.windows.net/test-container/key"
    blob.account_name = "myaccount"
    blob.container_name = "test-container"
    blob.blob_name = "key"
    blob.credential = None
    blob.get_blob_properties = AsyncMock()
    blob.download_blob = AsyncMock()
    blob.upload_blob = AsyncMock()
    blob.delete_blob = AsyncMock()
    blob.start_copy_from_url = AsyncMock()
    return blob


@pytest.fixture
def container_client(blob_client: MagicMock) -> MagicMock:
    container = MagicMock()
    container.container_name = "test-container"
    container.close = AsyncMock()
    container.get_blob_client.return_value = blob_client
    return container


@pytest.fixture
def service_client(container_client: MagicMock) -> MagicMock:
    service = MagicMock()
    service.close = AsyncMock()
    service.get_user_delegation_key = AsyncMock()
    service.get_container_client.return_value = container_client
    return service


@pytest.fixture
def bucket(service_client: MagicMock, container_client: MagicMock) -> AzureBlobBucket:
    return AzureBlobBucket(service_client, container_client)
