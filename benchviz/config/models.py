"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. Backend selection is captured in an explicit
:class:`StorageConfig` that is handed to the session coordinator, so several
independently configured coordinators can coexist in one process (tests rely
on this). :class:`EnvSettings` is the environment-driven source of that
config for the HTTP server.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import orjson
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..storage.mongo import DEFAULT_COLLECTION, DEFAULT_DATABASE, DEFAULT_MONGODB_URI


class StorageConfig(BaseModel):
    """Which session backends are enabled and how to reach them.

    Attributes
    ----------
    enable_file: bool
        Enable the filesystem backend. Defaults to True.
    enable_mongo: bool
        Enable the MongoDB backend. Defaults to False.
    data_dir: Path
        Directory used by the filesystem backend.
    mongo_uri: str
        MongoDB connection string.
    mongo_database: str
        Database holding the sessions collection.
    mongo_collection: str
        Collection name for session documents.
    mongo_timeout_ms: int
        Server selection timeout for the MongoDB driver.
    """

    enable_file: bool = Field(True, description="Enable filesystem storage")
    enable_mongo: bool = Field(False, description="Enable MongoDB storage")
    data_dir: Path = Field(Path("data"), description="Session file directory")
    mongo_uri: str = Field(DEFAULT_MONGODB_URI, description="MongoDB URI")
    mongo_database: str = Field(DEFAULT_DATABASE)
    mongo_collection: str = Field(DEFAULT_COLLECTION)
    mongo_timeout_ms: int = Field(5000, ge=1)

    @staticmethod
    def load(path: Path) -> "StorageConfig":
        """Load storage config from a JSON file."""
        return StorageConfig.model_validate(orjson.loads(path.read_bytes()))


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    ENABLE_FILE_STORAGE: bool
        Filesystem backend flag. Defaults to True.
    ENABLE_MONGO_STORAGE: bool
        MongoDB backend flag. Defaults to False.
    MONGODB_URI: str
        Connection string override for the MongoDB backend.
    MONGODB_DATABASE: str
        Database name for the MongoDB backend.
    DATA_DIR: str
        Directory for the filesystem backend.
    STORAGE_CONFIG: Optional[str]
        Optional path to a JSON :class:`StorageConfig`; when set it takes
        precedence over the individual flags above.
    HTTP_TOKEN: Optional[str]
        Bearer token required on mutating endpoints. Auth disabled when unset.
    CORS_ORIGINS: str
        Comma-separated list of allowed CORS origins.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="BENCHVIZ_", extra="ignore"
    )

    log_level: str = Field("INFO")

    ENABLE_FILE_STORAGE: bool = Field(
        True,
        description="Enable the filesystem session backend",
    )
    ENABLE_MONGO_STORAGE: bool = Field(
        False,
        description="Enable the MongoDB session backend",
    )
    MONGODB_URI: str = Field(
        DEFAULT_MONGODB_URI,
        description="MongoDB connection string",
    )
    MONGODB_DATABASE: str = Field(
        DEFAULT_DATABASE,
        description="MongoDB database holding the sessions collection",
    )
    DATA_DIR: str = Field(
        "data",
        description="Directory for session JSON files",
    )
    STORAGE_CONFIG: Optional[str] = Field(
        None,
        description="Path to a JSON storage config file",
    )

    HTTP_TOKEN: Optional[str] = Field(
        None,
        description="Bearer token for mutating endpoints (auth off when unset)",
    )
    CORS_ORIGINS: str = Field(
        "",
        description="Comma-separated CORS origins",
    )

    def storage_config(self) -> StorageConfig:
        """Build the explicit storage config these settings describe."""
        if self.STORAGE_CONFIG:
            return StorageConfig.load(Path(self.STORAGE_CONFIG))
        return StorageConfig(
            enable_file=self.ENABLE_FILE_STORAGE,
            enable_mongo=self.ENABLE_MONGO_STORAGE,
            data_dir=Path(self.DATA_DIR),
            mongo_uri=self.MONGODB_URI,
            mongo_database=self.MONGODB_DATABASE,
        )

    def cors_origins(self) -> List[str]:
        """Return the parsed CORS origin list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
