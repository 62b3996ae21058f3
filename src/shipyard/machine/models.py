# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/machine/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol


@dataclass
class AuthOptions:
    """
    TLS settings of the machine's container engine.
    """
    server_cert_sans: List[str] = field(default_factory=list)


class MachineHost(Protocol):
    auth_options: Optional[AuthOptions]

    def run_command(self, cmd: str) -> str: ...

    def copy_file(self, local_path: Path, remote_path: str, mode: int = 0o644) -> None: ...

    def configure_auth(self) -> None: ...


@dataclass
class Machine:
    """
    A created VM. Owned by the backend that created it.
    """
    name: str
    address: str                  # address the backend reports for the machine
    private_ip: str               # address inside the cluster network
    ssh_username: str
    host: Any                     # MachineHost
    driver_name: Optional[str] = None
