# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Iterable

from pydantic import ValidationError

from shipyard.errors import ConfigError
from .models import ProvisionerConfig

log = logging.getLogger("shipyard")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. SHIPYARD_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the installation config
    """
    env = os.environ.get("SHIPYARD_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("SHIPYARD_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(path: str | Path) -> ProvisionerConfig:
    """
    Load and validate an installation config.

    Driver credentials (cloud API tokens and the like) can be kept out of the
    main file: a ``secrets.yaml`` next to it, or the file named by
    ``SHIPYARD_SECRETS_FILE``, is deep-merged before validation.
    ``${ENV_VAR}`` placeholders are resolved in both files.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))

    try:
        return ProvisionerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}:\n{e}") from e


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        return value


def parse_driver_opts(pairs: Iterable[str]) -> Dict[str, Any]:
    """
    Turn ``key=value`` strings from the command line into driver options.
    """
    opts: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(f"driver option {pair!r} must look like key=value")
        opts[key] = _coerce(value.strip())
    return opts
