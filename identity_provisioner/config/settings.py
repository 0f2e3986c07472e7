import logging
from abc import ABC, abstractmethod
from typing import Literal, Mapping, Optional, Union

from azure.identity.aio import (
    AzureCliCredential,
    ClientSecretCredential,
    ManagedIdentityCredential,
)
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import AuthenticationError, ConfigurationError


logger = logging.getLogger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

AzureCredential = Union[AzureCliCredential, ClientSecretCredential, ManagedIdentityCredential]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")

    tenant_id: str = Field(default="", description="Entra ID tenant that receives new accounts")
    notification_email: str = Field(default="", description="Address notified about new accounts")
    credential_ref: str = Field(
        default="managed_identity",
        description="Stored credential used for Graph (managed_identity, azure_cli, client_secret)",
    )
    client_id: str = Field(default="", description="App registration or user-assigned identity client ID")
    client_secret: str = Field(default="", description="App registration secret for client_secret auth")
    usage_location: str = Field(default="", description="Two-letter usage location set on new accounts")
    propagation_delay_seconds: float = Field(
        default=10.0, ge=0, description="Wait after account creation before dependent calls"
    )

    directory_provider: Literal["mock", "graph"] = Field(default="mock", description="Directory backend")
    notification_provider: Literal["mock", "graph_mail"] = Field(default="mock", description="Notification backend")
    notification_sender: str = Field(default="", description="Mailbox used as sender for Graph sendMail")

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Unsupported log level {value}")
        return value

    @field_validator("directory_provider", "notification_provider", mode="before")
    @classmethod
    def _lower_provider(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def build_azure_credential(
    credential_ref: str,
    tenant_id: str,
    settings: Optional[Settings] = None,
) -> AzureCredential:
    """Resolve a stored credential reference into an async Azure credential."""
    settings = settings or get_settings()
    mode = (credential_ref or "managed_identity").lower()

    if mode == "managed_identity":
        credential = ManagedIdentityCredential(client_id=settings.client_id or None)
        logger.info("Initialized ManagedIdentityCredential for Microsoft Graph")
    elif mode == "azure_cli":
        credential = AzureCliCredential(tenant_id=tenant_id)
        logger.info("Initialized AzureCliCredential for Microsoft Graph")
    elif mode == "client_secret":
        if not settings.client_id or not settings.client_secret:
            raise AuthenticationError(
                "CLIENT_ID and CLIENT_SECRET must be configured for client_secret authentication"
            )
        credential = ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
        )
        logger.info("Initialized ClientSecretCredential for Microsoft Graph")
    else:
        raise AuthenticationError(f"Unknown credential reference '{credential_ref}'")

    return credential


class ConfigSource(ABC):
    """Key-value lookup for runbook configuration."""

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the value for ``key`` or raise ConfigurationError."""
        pass

    def get_optional(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            return self.get(key)
        except (ConfigurationError, KeyError):
            return default


class MappingConfigSource(ConfigSource):
    """Config backed by a plain mapping, e.g. exported automation variables."""

    def __init__(self, values: Mapping[str, Optional[str]]):
        self._values = dict(values)

    def get(self, key: str) -> str:
        value = self._values.get(key)
        if value is None or not str(value).strip():
            raise ConfigurationError(key)
        return str(value).strip()


class SettingsConfigSource(ConfigSource):
    """Config backed by the environment-loaded Settings."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()

    def get(self, key: str) -> str:
        value = getattr(self._settings, key, None)
        if value is None or not str(value).strip():
            raise ConfigurationError(key)
        return str(value).strip()
