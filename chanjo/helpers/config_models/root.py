from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from chanjo.helpers.config_models.cache import CacheModel
from chanjo.helpers.config_models.database import DatabaseModel
from chanjo.helpers.config_models.monitoring import MonitoringModel
from chanjo.helpers.config_models.reminder import ReminderConfigModel
from chanjo.helpers.config_models.sms import SmsModel


class RootModel(BaseSettings):
    # Pydantic settings
    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_nested_delimiter="__",
        env_prefix="",
    )

    version: str = Field(default="0.0.0-unknown", frozen=True)
    # Sections with defaults, only the SMS sender must be configured
    cache: CacheModel = CacheModel()
    database: DatabaseModel = DatabaseModel()
    monitoring: MonitoringModel = MonitoringModel()
    reminder: ReminderConfigModel = ReminderConfigModel()
    sms: SmsModel

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Environment variables override the loaded config file, for deployments sharing a file.
        """
        return env_settings, dotenv_settings, file_secret_settings, init_settings
