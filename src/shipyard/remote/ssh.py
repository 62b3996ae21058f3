# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/remote/ssh.py

from __future__ import annotations

import itertools
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Protocol

import paramiko

from shipyard.errors import RemoteExecutionError
from shipyard.utils.retry import RetryError, retry

log = logging.getLogger("shipyard")

# simple counter for unique temp names
_counter = itertools.count(1)


class RemoteTarget(Protocol):
    def run_command(self, cmd: str) -> str: ...

    def copy_file(self, local_path: Path, remote_path: str, mode: int = 0o644) -> None: ...


def _q(s: str) -> str:
    """
    Quote for bash -lc.
    """
    return "'" + s.replace("'", "'\"'\"'") + "'"


def _load_pkey(key_path: Path):
    for key_cls in (
        paramiko.RSAKey,
        paramiko.Ed25519Key,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(str(key_path))
        except paramiko.SSHException:
            continue
    raise RemoteExecutionError(f"Unsupported private key format for {key_path}")


class SSHChannel:
    """
    Lazily connected SSH session to one machine.

    Commands run through ``bash -lc``; files are uploaded over SFTP to a temp
    path and moved into place with sudo so root-owned targets work.
    """

    def __init__(
        self,
        address: str,
        username: str,
        *,
        port: int = 22,
        key_path: Optional[Path] = None,
        connect_timeout: float = 30.0,
        cmd_timeout: float = 120.0,
        connect_retries: int = 10,
        retry_delay: float = 6.0,
    ):
        self.address = address
        self.username = username
        self.port = port
        self.key_path = key_path
        self.connect_timeout = connect_timeout
        self.cmd_timeout = cmd_timeout
        self.connect_retries = connect_retries
        self.retry_delay = retry_delay
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._lock = threading.Lock()

    # ------------------ connection ------------------

    def _open(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        pkey = _load_pkey(self.key_path) if self.key_path else None
        client.connect(
            hostname=self.address,
            port=self.port,
            username=self.username,
            pkey=pkey,
            timeout=self.connect_timeout,
            look_for_keys=pkey is None,
            allow_agent=pkey is None,
        )
        return client

    def _connected(self) -> paramiko.SSHClient:
        with self._lock:
            if self._client is None:
                # freshly created machines may not accept SSH yet
                opener = retry(
                    retries=self.connect_retries,
                    delay=self.retry_delay,
                    retry_on=(paramiko.SSHException, OSError),
                    on_retry=lambda attempt, exc: log.info(
                        "[%s] SSH not ready (attempt %d/%d, %s: %s)",
                        self.address, attempt, self.connect_retries, type(exc).__name__, exc,
                    ),
                )(self._open)
                try:
                    self._client = opener()
                except RetryError as e:
                    raise RemoteExecutionError(
                        f"Failed to SSH into {self.address} as '{self.username}': {e.__cause__}"
                    ) from e
            return self._client

    def close(self) -> None:
        with self._lock:
            try:
                if self._sftp is not None:
                    self._sftp.close()
            finally:
                self._sftp = None
                if self._client is not None:
                    self._client.close()
                self._client = None

    # ------------------ remote operations ------------------

    def run_command(self, cmd: str) -> str:
        client = self._connected()
        log.debug("[%s] $ %s", self.address, cmd)
        try:
            _, stdout, stderr = client.exec_command(f"bash -lc {_q(cmd)}", timeout=self.cmd_timeout)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(f"[{self.address}] {cmd!r} failed: {e}", command=cmd) from e
        if exit_code != 0:
            raise RemoteExecutionError(
                f"[{self.address}] {cmd!r} exited with {exit_code}: {err.strip()}",
                command=cmd,
                exit_code=exit_code,
                stderr=err,
            )
        return out

    def copy_file(self, local_path: Path, remote_path: str, mode: int = 0o644) -> None:
        client = self._connected()
        tmp_remote = f"/tmp/.shipyard_tmp_{os.getpid()}_{next(_counter)}"
        log.debug("[%s] upload %s -> %s", self.address, local_path, remote_path)
        try:
            if self._sftp is None:
                self._sftp = client.open_sftp()
            self._sftp.put(str(local_path), tmp_remote)
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(
                f"[{self.address}] failed to upload {local_path} to {remote_path}: {e}"
            ) from e
        self.run_command(
            f"sudo install -m {oct(mode)[2:]} {tmp_remote} {remote_path} ; rc=$? ; rm -f {tmp_remote} ; exit $rc"
        )
