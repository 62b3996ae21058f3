# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/machine/orchestrator.py

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from shipyard.certs.generator import CertGenerator, X509CertGenerator, bootstrap_org
from shipyard.certs.store import CertStore
from shipyard.config.models import ProvisionerConfig
from shipyard.errors import (
    AuthConfigurationError,
    BackendError,
    BackendInitError,
    ProvisioningError,
    ShipyardError,
)
from shipyard.observers.dispatcher import EventBus
from shipyard.observers.events import (
    CertificatesUploaded,
    MachineCreated,
    ProvisionFailed,
    RegistryCertificateGenerated,
    RegistryCertificateReused,
    new_ctx,
)
from shipyard.remote.ssh import RemoteTarget

from .backend import MachineBackend
from .docker_machine import DockerMachineAPI
from .models import Machine

log = logging.getLogger("shipyard")

REGISTRY_PORT = 5000
REGISTRY_KEY_BITS = 2048
DOCKER_CERTS_PATH = "/etc/docker/certs.d"
SYSTEM_CA_BUNDLE = "/etc/ssl/certs/ca-certificates.crt"
REGISTRY_STORAGE_PATH = "/var/lib/registry/"

# applied over caller options so every machine is a standalone engine host
RESERVED_DRIVER_OPTS: Dict[str, Any] = {
    "swarm-master": False,
    "swarm-host": "",
    "engine-install-url": "",
    "swarm-discovery": "",
}


def store_base_path() -> Path:
    home = os.environ.get("SHIPYARD_HOME")
    base = Path(home) if home else Path.home() / ".shipyard"
    return base / "installs"


def merge_driver_opts(global_opts: Optional[Dict[str, Any]], call_opts: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Global options first; call options, then the reserved keys, win."""
    merged: Dict[str, Any] = dict(global_opts or {})
    merged.update(call_opts or {})
    merged.update(RESERVED_DRIVER_OPTS)
    return merged


class DockerMachine:
    """
    Provisions machines for one installation and bootstraps their trust in
    the installation's private registry.
    """

    def __init__(
        self,
        config: ProvisionerConfig,
        *,
        store_base: Optional[Path] = None,
        api: Optional[MachineBackend] = None,
        cert_generator: Optional[CertGenerator] = None,
        events: Optional[EventBus] = None,
        run_id: Optional[str] = None,
    ):
        self.driver_name = config.driver_name
        self.name = config.name
        self.store_path = Path(store_base or store_base_path()) / config.name
        self.certs_path = self.store_path / "certs"
        self.global_driver_opts = dict(config.driver_opts)
        self.docker_hub_mirror = config.docker_hub_mirror
        self.certs = CertStore(self.certs_path)
        self.cert_generator = cert_generator or X509CertGenerator()
        self.events = events or EventBus()
        self.run_id = run_id
        self._machines_count = 0
        self._count_lock = threading.Lock()

        if api is None:
            api = DockerMachineAPI(store_path=self.store_path, ca_path=config.ca_path)
        else:
            try:
                self.store_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise BackendInitError(f"cannot create store path {self.store_path}: {e}") from e
        self.api = api

    def _ctx(self) -> Dict[str, Any]:
        return new_ctx(self.name, self.run_id)

    # ------------------ naming ------------------

    def generate_machine_name(self) -> str:
        with self._count_lock:
            self._machines_count += 1
            seq = self._machines_count
        return f"{self.name}-{seq}"

    # ------------------ provisioning ------------------

    def provision_machine(self, driver_opts: Optional[Dict[str, Any]] = None) -> Machine:
        name = self.generate_machine_name()
        try:
            m = self.create_machine(driver_opts, name=name)
        except ShipyardError as e:
            self.events.emit(ProvisionFailed(**self._ctx(), name=name, stage="create", error=str(e)))
            raise ProvisioningError(
                f"error creating machine {name}: {e}",
                stage="create",
                machine_name=name,
            ) from e
        self.bootstrap_machine(m)
        return m

    def bootstrap_machine(self, m: Machine) -> None:
        """
        Install the registry trust material on an existing machine. Safe to
        call again after a failed bootstrap.
        """
        try:
            self.upload_registry_certificate(m.private_ip, m.ssh_username, m.host)
        except ShipyardError as e:
            self.events.emit(ProvisionFailed(**self._ctx(), name=m.name, stage="bootstrap", error=str(e)))
            raise ProvisioningError(
                f"error uploading registry certificates to {m.address}: {e}",
                stage="bootstrap",
                machine_name=m.name,
                address=m.address,
                machine=m,
            ) from e

    def create_machine(self, driver_opts: Optional[Dict[str, Any]] = None, *, name: Optional[str] = None) -> Machine:
        merged = merge_driver_opts(self.global_driver_opts, driver_opts)
        name = name or self.generate_machine_name()
        log.info("Creating machine %s (driver=%s)...", name, self.driver_name)
        m = self.api.create_machine(
            name=name,
            driver_name=self.driver_name,
            params=merged,
            registry_mirror=self.docker_hub_mirror,
        )
        auth = getattr(m.host, "auth_options", None)
        if auth is not None:
            if m.private_ip not in auth.server_cert_sans:
                auth.server_cert_sans.append(m.private_ip)
            try:
                m.host.configure_auth()
            except BackendError as e:
                raise AuthConfigurationError(f"failed to configure auth on {m.name}: {e}") from e
        self.events.emit(MachineCreated(**self._ctx(), name=m.name, address=m.address, private_ip=m.private_ip))
        return m

    # ------------------ certificate bootstrap ------------------

    def create_registry_certificate(self, *hosts: str) -> None:
        log.info("Creating registry certificate...")
        self.cert_generator.generate_cert(
            hosts=list(hosts),
            cert_file=self.certs.registry_cert,
            key_file=self.certs.registry_key,
            ca_file=self.certs.ca_cert,
            ca_key_file=self.certs.ca_key,
            org=bootstrap_org(),
            bits=REGISTRY_KEY_BITS,
        )

    def _registry_ip(self, ip: str) -> str:
        with self.certs.registry_lock():
            if not self.certs.has_registry_certificate():
                self.create_registry_certificate(ip)
                self.events.emit(RegistryCertificateGenerated(**self._ctx(), registry_ip=ip))
                return ip
            # one registry endpoint per installation: the first IP it was issued for
            registry_ip = self.certs.registry_ip()
            self.events.emit(RegistryCertificateReused(**self._ctx(), registry_ip=registry_ip))
            return registry_ip

    def upload_registry_certificate(self, ip: str, user: str, target: RemoteTarget) -> None:
        registry_ip = self._registry_ip(ip)

        log.info("Uploading registry certificate...")
        certs_base = f"/home/{user}/certs/{registry_ip}:{REGISTRY_PORT}"
        target.run_command(f"mkdir -p {certs_base}")
        target.run_command(f"sudo mkdir -p {DOCKER_CERTS_PATH}")

        for src, dst in self.certs.upload_plan(certs_base, DOCKER_CERTS_PATH):
            mode = 0o600 if src.name.endswith("key.pem") else 0o644
            target.copy_file(src, dst, mode=mode)

        target.run_command(f"sudo cp -r /home/{user}/certs/* {DOCKER_CERTS_PATH}/")
        target.run_command(f"sudo cat {DOCKER_CERTS_PATH}/ca.pem | sudo tee -a {SYSTEM_CA_BUNDLE}")
        target.run_command(f"sudo mkdir -p {REGISTRY_STORAGE_PATH}")
        self.events.emit(CertificatesUploaded(**self._ctx(), address=ip, registry_ip=registry_ip))

    # ------------------ teardown ------------------

    def delete_all(self) -> None:
        self.api.delete_all()

    def close(self) -> None:
        self.api.close()
