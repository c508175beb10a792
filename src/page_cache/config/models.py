from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence
from urllib.parse import urljoin

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_VARIANT_TOKEN_RE = re.compile(r"^[A-Za-z0-9_]*$")


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    rotation: FileRotationSettings


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str
    file: FileLoggingSettings


class RequestVariantSettings(BaseModel):
    """A request variant: a distinct cached rendition of the same URL (e.g. mobile pages)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    label: str = ""
    headers: Mapping[str, str] = Field(default_factory=dict)


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_dir: str = "data/cache"
    lock_path: str = "data/state/cache.lock"
    locking_enabled: bool = True
    compression_level: int = Field(default=9, ge=1, le=9)

    # Variant token -> settings. The default variant "" is always present.
    request_variants: Mapping[str, RequestVariantSettings] = Field(
        default_factory=lambda: {"": RequestVariantSettings(label="Default")}
    )

    @field_validator("request_variants")
    @classmethod
    def _check_request_variants(
        cls, value: Mapping[str, RequestVariantSettings]
    ) -> Dict[str, RequestVariantSettings]:
        variants = dict(value)
        for token in variants:
            if not _VARIANT_TOKEN_RE.match(token):
                raise ValueError(f"Invalid request variant token: {token!r}")
        variants.setdefault("", RequestVariantSettings(label="Default"))
        return variants


class StateSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    state_dir: str = "data/state/kv"


class WarmUpSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    home_url: str
    robots_txt_url: Optional[str] = None
    sitemap_url: Optional[str] = None
    initial_urls: Optional[Sequence[str]] = None
    exclude_url_patterns: Sequence[str] = ()

    invocation_delay_seconds: float = Field(default=600.0, ge=0)
    run_timeout_seconds: float = Field(default=60.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    feeder_lock_path: str = "data/state/feeder.lock"
    # Write 200 responses to the cache directly, for setups without a capturing front end.
    store_responses: bool = False

    @model_validator(mode="before")
    @classmethod
    def _derive_sitemap_urls(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("home_url"):
            return data
        data = dict(data)
        home_url = str(data["home_url"])
        if not data.get("robots_txt_url"):
            data["robots_txt_url"] = urljoin(home_url, "/robots.txt")
        if not data.get("sitemap_url"):
            data["sitemap_url"] = urljoin(home_url, "/sitemap.xml")
        return data


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    logging: LoggingSettings
    cache: CacheSettings = Field(default_factory=CacheSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    warm_up: WarmUpSettings


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "PAGE_CACHE__"
    dotenv_path: Optional[str] = "data/.env"
