"""
Environment-based configuration for the Azure blob driver.

Settings come from ``AZURE_STORAGE_*`` environment variables (optionally
loaded from a ``.env`` file). They are created once per process, frozen, and
shared read-only afterwards.
"""

import threading
from pathlib import Path
from typing import Literal

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

ENV_FILE = Path(".env")
DEFAULT_STORAGE_DOMAIN = "blob.core.windows.net"


class AzureStorageSettings(BaseSettings):
    """Azure Storage account and driver settings."""

    model_config = SettingsConfigDict(
        env_prefix="AZURE_STORAGE_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Credentials
    account: str | None = Field(default=None, description="Storage account name")
    key: str | None = Field(default=None, description="Shared key for the account")
    sas_token: str | None = Field(default=None, description="SAS token appended to the service URL")
    connection_string: str | None = Field(default=None, description="Full connection string")

    # Service URL
    domain: str = Field(default=DEFAULT_STORAGE_DOMAIN, description="Storage domain of the Azure cloud")
    protocol: Literal["http", "https"] = Field(default="https", description="Protocol of the service URL")
    is_cdn: bool = Field(default=False, description="Domain is a CDN in front of the account")
    is_local_emulator: bool = Field(default=False, description="Target the local storage emulator")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("domain", mode="before")
    @classmethod
    def default_domain(cls, v):
        return v or DEFAULT_STORAGE_DOMAIN

    @field_validator("protocol", mode="before")
    @classmethod
    def default_protocol(cls, v):
        return v or "https"

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def service_url_options(self) -> "ServiceURLOptions":
        return ServiceURLOptions(
            account_name=self.account or "",
            sas_token=self.sas_token or "",
            storage_domain=self.domain,
            protocol=self.protocol,
            is_cdn=self.is_cdn,
            is_local_emulator=self.is_local_emulator,
        )


class ServiceURLOptions(BaseModel):
    """Inputs for building the service URL of a storage account."""

    account_name: str = ""
    sas_token: str = ""
    storage_domain: str = ""
    protocol: str = ""
    is_cdn: bool = False
    is_local_emulator: bool = False


# Process-wide settings; written once, read-only afterwards.
_settings: AzureStorageSettings | None = None
_settings_lock = threading.Lock()


def _load_env_file() -> None:
    if ENV_FILE.exists():
        load_dotenv(ENV_FILE, override=False)
        logger.debug("Loaded environment variables", path=str(ENV_FILE))


def configure(settings: AzureStorageSettings) -> AzureStorageSettings:
    """
    Install explicit settings for the process.

    Raises:
        RuntimeError: If settings were already initialized.
    """
    global _settings
    with _settings_lock:
        if _settings is not None:
            raise RuntimeError("storage settings are already initialized")
        _settings = settings
    return settings


def get_settings() -> AzureStorageSettings:
    """Return the process-wide settings, creating them on first use."""
    global _settings
    if _settings is not None:
        return _settings
    with _settings_lock:
        if _settings is None:
            _load_env_file()
            _settings = AzureStorageSettings()
            logger.info("Loaded storage settings", account=_settings.account, domain=_settings.domain)
        return _settings


def reset_settings() -> None:
    """Forget the process-wide settings so the next get_settings reloads them."""
    global _settings
    with _settings_lock:
        _settings = None
