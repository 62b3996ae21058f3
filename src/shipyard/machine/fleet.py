# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/machine/fleet.py

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shipyard.errors import ShipyardError

from .models import Machine
from .orchestrator import DockerMachine

log = logging.getLogger("shipyard")


@dataclass
class FleetReport:
    machines: List[Machine] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def provision_fleet(
    provisioner: DockerMachine,
    count: int,
    driver_opts: Optional[Dict[str, Any]] = None,
    *,
    max_workers: int = 4,
) -> FleetReport:
    """
    Provision ``count`` machines in parallel. Every call gets its own copy
    of ``driver_opts``; failures are collected, not raised.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    report = FleetReport()
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, min(max_workers, count))) as pool:
        futures = [
            pool.submit(provisioner.provision_machine, dict(driver_opts or {}))
            for _ in range(count)
        ]
        for fut in concurrent.futures.as_completed(futures):
            try:
                m = fut.result()
            except ShipyardError as e:
                log.error("%s", e)
                report.errors.append(e)
                continue
            except Exception as e:
                log.error("unexpected provisioning failure: %s", e, exc_info=True)
                report.errors.append(e)
                continue
            log.info("[%s] ready at %s", m.name, m.address)
            report.machines.append(m)

    report.machines.sort(key=lambda m: m.name)
    return report
