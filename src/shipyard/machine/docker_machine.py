# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/machine/docker_machine.py

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO

from shipyard.errors import BackendError, BackendInitError
from shipyard.remote.ssh import SSHChannel

from .models import AuthOptions, Machine

log = logging.getLogger("shipyard")

_REQUIRED_CA_FILES = ("ca.pem", "ca-key.pem")
_OPTIONAL_CA_FILES = ("cert.pem", "key.pem")


def driver_flags(params: Dict[str, Any]) -> List[str]:
    """
    Render driver options as ``docker-machine create`` flags.

    ``True`` becomes a bare flag, ``False``/``None`` are left out, lists
    repeat the flag. Empty strings are passed through since docker-machine
    treats them as "disabled" (e.g. ``--engine-install-url ""``).
    """
    flags: List[str] = []
    for key in sorted(params):
        value = params[key]
        flag = f"--{key}"
        if value is True:
            flags.append(flag)
        elif value is False or value is None:
            continue
        elif isinstance(value, (list, tuple)):
            for item in value:
                flags += [flag, str(item)]
        else:
            flags += [flag, str(value)]
    return flags


class DockerMachineHost:
    """Remote handle of a machine created through docker-machine."""

    def __init__(
        self,
        api: "DockerMachineAPI",
        name: str,
        channel: SSHChannel,
        auth_options: Optional[AuthOptions],
    ):
        self._api = api
        self.name = name
        self.channel = channel
        self.auth_options = auth_options

    def run_command(self, cmd: str) -> str:
        return self.channel.run_command(cmd)

    def copy_file(self, local_path: Path, remote_path: str, mode: int = 0o644) -> None:
        self.channel.copy_file(local_path, remote_path, mode=mode)

    def configure_auth(self) -> None:
        """
        Persist the current SANs in the machine config and regenerate the
        engine's server certificate from it.
        """
        config_path = self._api.machine_dir(self.name) / "config.json"
        try:
            data = json.loads(config_path.read_text())
        except (OSError, ValueError) as e:
            raise BackendError(f"cannot read machine config {config_path}: {e}") from e
        sans = list(self.auth_options.server_cert_sans) if self.auth_options else []
        data.setdefault("HostOptions", {}).setdefault("AuthOptions", {})["ServerCertSANs"] = sans
        config_path.write_text(json.dumps(data, indent=4))
        self._api.run(["regenerate-certs", "--force", self.name], echo=True)


class DockerMachineAPI:
    """
    Machine backend driving the ``docker-machine`` CLI against a private
    storage path, one per installation.
    """

    def __init__(
        self,
        *,
        store_path: Path,
        ca_path: Optional[Path] = None,
        out_writer: TextIO = sys.stdout,
        err_writer: TextIO = sys.stderr,
        binary: str = "docker-machine",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.store_path = Path(store_path)
        self.certs_path = self.store_path / "certs"
        self.out_writer = out_writer
        self.err_writer = err_writer
        self.runner = runner
        self._channels: List[SSHChannel] = []
        self._lock = threading.Lock()

        resolved = shutil.which(binary)
        if resolved is None:
            raise BackendInitError(f"{binary} not found in PATH")
        self.binary = resolved

        try:
            self.certs_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendInitError(f"cannot create store path {self.store_path}: {e}") from e

        if ca_path:
            self._install_ca(Path(ca_path))

    def _install_ca(self, ca_path: Path) -> None:
        for name in _REQUIRED_CA_FILES + _OPTIONAL_CA_FILES:
            src = ca_path / name
            if not src.exists():
                if name in _REQUIRED_CA_FILES:
                    raise BackendInitError(f"CA file {src} not found")
                continue
            try:
                shutil.copyfile(src, self.certs_path / name)
            except OSError as e:
                raise BackendInitError(f"cannot copy {src} to {self.certs_path}: {e}") from e
        log.debug("Copied CA material from %s to %s", ca_path, self.certs_path)

    def machine_dir(self, name: str) -> Path:
        return self.store_path / "machines" / name

    def run(self, args: List[str], *, echo: bool = False) -> str:
        """
        Run one docker-machine subcommand. With ``echo`` its stdout goes to
        ``out_writer``; stderr of a failed call always goes to ``err_writer``.
        """
        cmd = [self.binary, "--storage-path", str(self.store_path), *args]
        log.debug("$ %s", " ".join(cmd))
        try:
            cp = self.runner(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise BackendError(f"docker-machine {args[0]} failed: {e}") from e
        if cp.stdout:
            log.debug(cp.stdout.rstrip())
            if echo:
                self.out_writer.write(cp.stdout)
        if cp.returncode != 0:
            if cp.stderr:
                self.err_writer.write(cp.stderr)
            raise BackendError(
                f"docker-machine {args[0]} failed (rc={cp.returncode}): {(cp.stderr or '').strip()}"
            )
        return cp.stdout or ""

    # ------------------ backend API ------------------

    def create_machine(
        self,
        *,
        name: str,
        driver_name: str,
        params: Dict[str, Any],
        registry_mirror: Optional[str] = None,
    ) -> Machine:
        args = ["create", "--driver", driver_name]
        if registry_mirror:
            args += ["--engine-registry-mirror", registry_mirror]
        args += driver_flags(params)
        args.append(name)
        self.out_writer.write(f"Creating machine {name} with driver {driver_name}...\n")
        self.run(args, echo=True)
        return self.get_machine(name, driver_name=driver_name)

    def get_machine(self, name: str, driver_name: Optional[str] = None) -> Machine:
        try:
            data = json.loads(self.run(["inspect", name]))
        except ValueError as e:
            raise BackendError(f"docker-machine inspect {name} returned invalid JSON: {e}") from e

        driver = data.get("Driver") or {}
        address = driver.get("IPAddress") or self.run(["ip", name]).strip()
        private_ip = driver.get("PrivateIPAddress") or address
        ssh_user = driver.get("SSHUser") or "docker"
        key_path = driver.get("SSHKeyPath") or str(self.machine_dir(name) / "id_rsa")

        auth = (data.get("HostOptions") or {}).get("AuthOptions")
        auth_options = None
        if auth is not None:
            auth_options = AuthOptions(server_cert_sans=list(auth.get("ServerCertSANs") or []))

        channel = SSHChannel(address, ssh_user, key_path=Path(key_path))
        with self._lock:
            self._channels.append(channel)

        return Machine(
            name=name,
            address=address,
            private_ip=private_ip,
            ssh_username=ssh_user,
            host=DockerMachineHost(self, name, channel, auth_options),
            driver_name=driver_name or data.get("DriverName"),
        )

    def delete_all(self) -> None:
        names = self.run(["ls", "-q"]).split()
        failures = []
        for name in names:
            try:
                self.run(["rm", "-y", name], echo=True)
            except BackendError as e:
                failures.append(f"{name}: {e}")
        if failures:
            raise BackendError("failed to delete machines: " + "; ".join(failures))

    def close(self) -> None:
        with self._lock:
            channels, self._channels = self._channels, []
        for channel in channels:
            channel.close()
