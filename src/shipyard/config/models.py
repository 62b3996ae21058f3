# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/config/models.py

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class ProvisionerConfig(BaseModel):
    """
    Identity and storage location of a single installation.
    """
    model_config = ConfigDict(frozen=True)

    driver_name: str = "virtualbox"
    ca_path: Optional[Path] = None
    name: str = "shipyard"
    driver_opts: Dict[str, Any] = Field(default_factory=dict)
    docker_hub_mirror: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        # used as a directory name and as the machine name prefix
        if not _NAME_RE.match(v):
            raise ValueError(
                f"installation name {v!r} must start with a letter or digit and "
                "contain only letters, digits, '.', '_' or '-'"
            )
        return v

    @field_validator("driver_name")
    @classmethod
    def _valid_driver(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("driver_name must not be empty")
        return v
