"""Configuration loading.

Process settings come from ``COMPARE_REVISIONS_*`` environment variables.
The comparison itself is described by a YAML document, loaded at startup
and optionally reloaded from the config repository on every cycle.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from compare_revisions.errors import ConfigurationError
from compare_revisions.git.address import RepoAddress, parse_address
from compare_revisions.models.config import (
    APIConfig,
    AppConfig,
    Config,
    ConfigRepo,
    Environment,
    GitConfig,
    ImageConfig,
    LogConfig,
)
from compare_revisions.policy import RevisionPolicy, build_policy

_DURATION_RE = re.compile(r"^([0-9]+)(s|m|h)$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"COMPARE_REVISIONS_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_app_config() -> AppConfig:
    """Load process settings from COMPARE_REVISIONS_* environment variables."""
    return AppConfig(
        config_file=Path(_env("CONFIG_FILE", "config.yaml")),
        git=GitConfig(
            repo_dir=Path(_env("GIT_REPO_DIR", "/var/lib/compare-revisions")),
            timeout_seconds=_env_int("GIT_TIMEOUT", 300, min_val=10, max_val=3600),
        ),
        api=APIConfig(
            host=_env("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )


def parse_duration(value: str | int | float) -> float:
    """Parse ``30s``, ``5m`` or ``1h`` into seconds.  Bare numbers are seconds."""
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid duration: {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(value.strip())
        if match is None:
            raise ConfigurationError(f"invalid duration: {value!r} (expected e.g. 30s, 5m, 1h)")
        seconds = float(int(match.group(1)) * _DURATION_UNITS[match.group(2)])
    if seconds <= 0:
        raise ConfigurationError(f"duration must be positive: {value!r}")
    return seconds


def load_config_file(path: Path) -> Config:
    """Read and validate the configuration document at *path*."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read config file {path}: {exc}") from exc
    return parse_config(text, source=str(path))


def parse_config(text: str, source: str = "<config>") -> Config:
    """Parse and validate a configuration document."""
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{source}: invalid YAML: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{source}: expected a mapping at the top level")

    config_repo = _parse_config_repo(_section(raw, "config-repo", source), source)

    policies: dict[str, RevisionPolicy] = {}
    for name, spec in _optional_mapping(raw, "revision-policies", source).items():
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"{source}: policy {name!r} must be a mapping")
        policies[str(name)] = build_policy(str(name), spec)

    images: dict[str, ImageConfig] = {}
    for name, spec in _optional_mapping(raw, "images", source).items():
        image = _parse_image(str(name), spec, source)
        if image.policy not in policies:
            raise ConfigurationError(f"{source}: image {name!r} refers to unknown policy {image.policy!r}")
        images[str(name)] = image

    return Config(config_repo=config_repo, images=images, revision_policies=policies)


def _parse_config_repo(raw: Mapping[str, Any], source: str) -> ConfigRepo:
    source_env = _parse_environment(_section(raw, "source-env", source), source)
    target_env = _parse_environment(_section(raw, "target-env", source), source)
    if source_env.name == target_env.name:
        raise ConfigurationError(f"{source}: source and target environments share the name {source_env.name!r}")
    config_path = raw.get("config-path")
    if config_path and not _inside_checkout(str(config_path)):
        raise ConfigurationError(f"{source}: config-path must stay inside the checkout")
    return ConfigRepo(
        url=_parse_url(raw.get("url"), "config-repo.url", source),
        branch=str(raw.get("branch") or "master"),
        poll_interval=parse_duration(raw.get("poll-interval", "1m")),
        source_env=source_env,
        target_env=target_env,
        config_path=str(config_path) if config_path else None,
    )


def _parse_environment(raw: Mapping[str, Any], source: str) -> Environment:
    name = raw.get("name")
    path = raw.get("path")
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"{source}: environment needs a 'name'")
    if not isinstance(path, str):
        raise ConfigurationError(f"{source}: environment {name!r} needs a 'path'")
    if not _inside_checkout(path):
        raise ConfigurationError(f"{source}: environment {name!r} path must stay inside the checkout")
    branch = raw.get("branch")
    return Environment(name=name, path=path, branch=str(branch) if branch else None)


def _inside_checkout(path: str) -> bool:
    return not Path(path).is_absolute() and ".." not in Path(path).parts


def _parse_image(name: str, raw: Any, source: str) -> ImageConfig:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{source}: image {name!r} must be a mapping")
    policy = raw.get("image-to-revision-policy")
    if not isinstance(policy, str) or not policy:
        raise ConfigurationError(f"{source}: image {name!r} needs an 'image-to-revision-policy'")
    paths = raw.get("paths") or []
    if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
        raise ConfigurationError(f"{source}: image {name!r} 'paths' must be a list of strings")
    return ImageConfig(
        git_url=_parse_url(raw.get("git-url"), f"images.{name}.git-url", source),
        policy=policy,
        paths=tuple(paths),
    )


def _parse_url(value: Any, field_name: str, source: str) -> RepoAddress:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{source}: {field_name} is required")
    try:
        return parse_address(value)
    except ConfigurationError as exc:
        raise ConfigurationError(f"{source}: {field_name}: {exc}") from exc


def _section(raw: Mapping[str, Any], key: str, source: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{source}: missing or invalid '{key}' section")
    return value


def _optional_mapping(raw: Mapping[str, Any], key: str, source: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{source}: '{key}' must be a mapping")
    return value
