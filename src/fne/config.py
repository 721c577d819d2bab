from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_BASE_URLS = {
    "test": "https://fne-api-mock.test",
    "production": "https://fne.dgi.gouv.ci/ws",
}


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl: int | None = Field(default=3600, ge=0)


class RetrySettings(BaseModel):
    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)


class MappingSettings(BaseModel):
    invoice: dict[str, str] = Field(default_factory=dict)
    purchase: dict[str, str] = Field(default_factory=dict)
    refund: dict[str, str] = Field(default_factory=dict)

    def for_type(self, document_type: str) -> dict[str, str]:
        return dict(getattr(self, document_type))


class FneSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FNE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str = ""
    mode: Literal["test", "production"] = "test"
    base_url: str | None = None
    timeout: float = Field(default=30.0, gt=0)
    locale: Literal["fr", "en"] = "fr"
    cache: CacheSettings = Field(default_factory=CacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    mapping: MappingSettings = Field(default_factory=MappingSettings)
    certification_table: bool = False
    database_url: str = "sqlite:///fne_certifications.db"

    @model_validator(mode="after")
    def _default_base_url(self) -> "FneSettings":
        if not self.base_url:
            self.base_url = DEFAULT_BASE_URLS[self.mode]
        self.base_url = self.base_url.rstrip("/")
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> "FneSettings":
        if not path.exists():
            raise FileNotFoundError(str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Expected a YAML mapping at {path}, got {type(data).__name__}.")
        return cls(**data)

    def require_api_key(self) -> str:
        if not self.api_key.strip():
            raise ConfigurationError("The FNE API key is not configured. Set FNE_API_KEY.")
        return self.api_key


@lru_cache
def get_settings() -> FneSettings:
    return FneSettings()
