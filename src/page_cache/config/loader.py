from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, MutableMapping, Sequence

from page_cache.config.models import (
    AppConfig,
    ConfigLoadRequest,
)

DEFAULT_CONFIG_TEMPLATE = Path("examples/config.yaml")


def _read_yaml_config(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: PyYAML is required to load the YAML config file. Install 'PyYAML'."
        ) from e

    if not path.exists() and DEFAULT_CONFIG_TEMPLATE.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(DEFAULT_CONFIG_TEMPLATE, path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    try:
        from dotenv import load_dotenv  # type: ignore[import-not-found]
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "Missing dependency: python-dotenv is required to load .env. Install 'python-dotenv'."
        ) from e

    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


def _set_config_value(config: MutableMapping[str, Any], segments: Sequence[str], value: str) -> None:
    """Replace an existing `section.key` value; overrides never introduce new keys."""
    dotted = ".".join(segments)
    section: MutableMapping[str, Any] = config
    for segment in segments[:-1]:
        if segment not in section:
            raise KeyError(f"Unknown configuration key path: {dotted}")
        section = section[segment]
        if not isinstance(section, dict):
            raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")
    if segments[-1] not in section:
        raise KeyError(f"Unknown configuration key path: {dotted}")
    # Raw strings; pydantic coerces them during validation.
    section[segments[-1]] = value


def _apply_env_overrides(config: MutableMapping[str, Any], env_prefix: str) -> None:
    for name, value in os.environ.items():
        if not name.startswith(env_prefix):
            continue
        segments = [part.lower() for part in name[len(env_prefix) :].split("__") if part]
        if not segments:
            raise ValueError(f"Invalid environment variable override name: {name}")
        _set_config_value(config, segments, value)


def _ensure_data_dirs(config: AppConfig) -> None:
    """Create the directories the configured cache, state, lock and log paths live in."""
    dirs = [Path(config.cache.cache_dir), Path(config.state.state_dir)]
    for path in (config.cache.lock_path, config.warm_up.feeder_lock_path, config.logging.file.path.strip()):
        if path:
            dirs.append(Path(path).parent)
    for directory in dirs:
        directory.mkdir(parents=True, exist_ok=True)


class YamlConfigLoader:
    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        config = _read_yaml_config(Path(request.yaml_path))

        if request.dotenv_path is not None:
            _load_dotenv_if_present(Path(request.dotenv_path))

        _apply_env_overrides(config, request.env_prefix)
        app_config = AppConfig.model_validate(config)
        _ensure_data_dirs(app_config)
        return app_config
