# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from .models import Machine


class MachineBackend(Protocol):
    """Creates and destroys VMs for one installation store."""

    def create_machine(
        self,
        *,
        name: str,
        driver_name: str,
        params: Dict[str, Any],
        registry_mirror: Optional[str] = None,
    ) -> Machine: ...

    def delete_all(self) -> None: ...

    def close(self) -> None: ...
