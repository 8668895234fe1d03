from enum import Enum
from functools import cached_property

from pydantic import BaseModel, model_validator

from chanjo.persistence.istore import IStore


class ModeEnum(str, Enum):
    COSMOS_DB = "cosmos_db"
    """Use Azure Cosmos DB, for production."""
    SQLITE = "sqlite"
    """Use a local SQLite file, for development and tests."""


class CosmosDbModel(BaseModel, frozen=True):
    babies_container: str = "babies"
    database: str
    endpoint: str
    recipients_container: str = "mothers"
    reminders_container: str = "reminders"
    schedule_container: str = "vaccination_schedule"


class SqliteModel(BaseModel, frozen=True):
    path: str = ".local"
    schema_version: int = 1

    def full_path(self) -> str:
        """
        Returns the full path to the SQLite database file.

        Formatted as: `{path}-v{schema_version}.sqlite`.
        """
        return f"{self.path}-v{self.schema_version}.sqlite"


class DatabaseModel(BaseModel):
    mode: ModeEnum = ModeEnum.SQLITE
    cosmos_db: CosmosDbModel | None = None
    sqlite: SqliteModel | None = SqliteModel()  # Object is fully defined by default

    @model_validator(mode="after")
    def _validate_backend(self) -> "DatabaseModel":
        if getattr(self, self.mode.value) is None:
            raise ValueError(
                f"Database mode is {self.mode.value}, its config is required"
            )
        return self

    @cached_property
    def instance(self) -> IStore:
        from chanjo.helpers.config import CONFIG

        if self.mode == ModeEnum.COSMOS_DB:
            from chanjo.persistence.cosmos_db import CosmosDbStore

            assert self.cosmos_db
            return CosmosDbStore(
                cache=CONFIG.cache.instance,
                cache_config=CONFIG.cache,
                config=self.cosmos_db,
            )

        from chanjo.persistence.sqlite import SqliteStore

        assert self.sqlite
        return SqliteStore(
            cache=CONFIG.cache.instance,
            cache_config=CONFIG.cache,
            config=self.sqlite,
        )
