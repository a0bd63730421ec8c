"""
Interface to configuration as persisted in .yaml file and environment.
"""
from __future__ import annotations

import os
from logging import Logger
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core import DEFAULT_QUIET_INTERVAL, FirebaseStore
from .yaml_model import BaseYamlModel

__all__ = [
    "Config",
    "BackendConfig",
    "DEFAULT_CACHE_DIR",
]

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "textvault"
"""
Default folder for local cache entries and the remembered session.
"""

PLACEHOLDER_PREFIX = "your-"
"""
Prefix of values copied unchanged from a template, e.g. `your-project-id`.
"""


class BackendConfig(BaseModel):
    """
    Connection info for a realtime database.
    """

    database_url: str
    """
    Database URL, e.g. `https://my-app-default-rtdb.firebaseio.com`.
    """

    auth: str | None = None
    """
    Database secret or ID token, if the database rules require one.
    """

    timeout: float = Field(default=10.0, gt=0)

    @field_validator("database_url")
    def validate_database_url(cls, value: str) -> str:
        value = value.strip()
        _reject_placeholder("database_url", value)

        if not value.startswith(("http://", "https://")):
            raise ValueError(f"database_url must be an http(s) URL: '{value}'")

        return value.rstrip("/")

    @field_validator("auth")
    def validate_auth(cls, value: str | None) -> str | None:
        if value:
            _reject_placeholder("auth", value)
        return value or None

    @classmethod
    def from_env(cls) -> BackendConfig | None:
        """
        Get backend from `TEXTVAULT_DATABASE_URL` and
        `TEXTVAULT_DATABASE_AUTH`, if set.
        """
        database_url = os.environ.get("TEXTVAULT_DATABASE_URL")
        if not database_url:
            return None

        return cls(
            database_url=database_url,
            auth=os.environ.get("TEXTVAULT_DATABASE_AUTH"),
        )

    def create_store(self, *, logger: Logger) -> FirebaseStore:
        """
        Get store from this backend's fields.
        """
        return FirebaseStore(
            self.database_url,
            auth=self.auth,
            timeout=self.timeout,
            logger=logger,
        )


class Config(BaseYamlModel):
    """
    Encapsulates configuration for use in tools.
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    """
    Folder for local cache entries and the remembered session.
    """

    quiet_interval: float = Field(default=DEFAULT_QUIET_INTERVAL, ge=0)
    """
    Seconds without edits before changes are written.
    """

    backends: dict[str, BackendConfig] = Field(default_factory=dict)
    """
    Mapping of backend names to connection info.
    """

    default_backend: str | None = None
    """
    Backend to use if none selected; the only backend if there's just one.
    """

    @field_validator("cache_dir", mode="before")
    def validate_cache_dir(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @model_validator(mode="after")
    def validate_default_backend(self) -> Self:
        if self.default_backend is None:
            if len(self.backends) == 1:
                self.default_backend = next(iter(self.backends))
        elif self.default_backend not in self.backends:
            raise ValueError(
                f"default_backend '{self.default_backend}' not in backends"
            )
        return self

    def get_backend(self, name: str | None = None) -> BackendConfig:
        """
        Lookup backend by name, or the default backend.

        :raises KeyError: If there is no such backend
        """
        name = name or self.default_backend

        if name is None:
            raise KeyError("no backend selected and no default configured")
        if name not in self.backends:
            raise KeyError(f"backend '{name}' not found")

        return self.backends[name]


def _reject_placeholder(field: str, value: str):
    if not value or PLACEHOLDER_PREFIX in value:
        raise ValueError(
            f"{field} is missing or contains a placeholder value: '{value}'"
        )
