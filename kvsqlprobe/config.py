"""
Application settings.

Values come from an optional ``appsettings.json`` (path overridable with
``APPSETTINGS_PATH``) and are overridden by environment variables, where
``__`` separates nesting levels: ``Azure__KeyVaultUrl`` sets
``Azure.KeyVaultUrl``. Environment names are matched case-insensitively.
"""

import logging
import os
from typing import Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

SETTINGS_FILE = "appsettings.json"
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


class ServicePrincipalSettings(BaseModel):
    TenantId: Optional[str] = None
    ClientId: Optional[str] = None
    ClientSecret: Optional[str] = Field(default=None, repr=False)


class AzureSettings(BaseModel):
    KeyVaultUrl: Optional[str] = None
    SqlConnectionStringSecretName: str = "Sql--ConnectionString"
    SPTenantIDSecretName: str = "SPTenantId"
    # Key name as deployed in existing appsettings files.
    SPClienttIDSecretName: str = "SPClientID"
    SPClientSecretSecretName: str = "SPClientSecret"
    ManagedIdentityClientId: Optional[str] = None
    DefaultAuthMethod: str = "ManagedIdentity"
    AllowInteractiveAuth: bool = False
    ServicePrincipal: ServicePrincipalSettings = Field(default_factory=ServicePrincipalSettings)


class ConnectionStringSettings(BaseModel):
    Default: Optional[str] = None


class SqlSettings(BaseModel):
    OdbcDriver: str = DEFAULT_ODBC_DRIVER


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    Azure: AzureSettings = Field(default_factory=AzureSettings)
    ConnectionStrings: ConnectionStringSettings = Field(default_factory=ConnectionStringSettings)
    Sql: SqlSettings = Field(default_factory=SqlSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # First source wins: keyword arguments, then environment, then the file.
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=settings_file()),
        )


class EnvironmentSettings(Settings):
    """Settings without the JSON file, used when the file cannot be loaded."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings


def settings_file() -> str:
    return os.environ.get("APPSETTINGS_PATH") or SETTINGS_FILE


def load_settings() -> Settings:
    """Load settings from the JSON file and the environment.

    An unreadable or invalid file is logged and skipped; invalid environment
    values still raise.
    """
    path = settings_file()
    try:
        settings = Settings()
    except ValueError as ex:
        logger.warning("Ignoring configuration file %s: %s", path, ex)
        return EnvironmentSettings()

    if os.path.isfile(path):
        logger.info("Loaded configuration file %s", path)
    return settings
