# src/shipyard/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str                 # ISO timestamp
    run_id: str             # correlates all events in a single install session
    installation: str       # installation name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(installation: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "installation": installation,
    }


# ---------------------------------------------------------------------
# Machine lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MachineCreated(BaseEvent):
    name: str
    address: str
    private_ip: str


@dataclass(frozen=True)
class ProvisionFailed(BaseEvent):
    name: Optional[str]
    stage: str          # "create" | "bootstrap"
    error: str


# ---------------------------------------------------------------------
# Registry certificate bootstrap
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RegistryCertificateGenerated(BaseEvent):
    registry_ip: str


@dataclass(frozen=True)
class RegistryCertificateReused(BaseEvent):
    registry_ip: str


@dataclass(frozen=True)
class CertificatesUploaded(BaseEvent):
    address: str
    registry_ip: str
