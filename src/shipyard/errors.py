# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/errors.py

from __future__ import annotations

from typing import Optional


class ShipyardError(RuntimeError):
    """Base class for provisioning failures."""


class ConfigError(ShipyardError):
    """Raised when the installation config is missing or malformed."""


class BackendError(ShipyardError):
    """Raised when the machine provisioner backend fails."""


class BackendInitError(BackendError):
    """Raised when the backend cannot be reached or the store cannot be created."""


class AuthConfigurationError(BackendError):
    """Raised when re-applying a machine's TLS auth options fails."""


class CertificateError(ShipyardError):
    """Raised when the registry certificate cannot be generated or parsed."""


class RemoteExecutionError(ShipyardError):
    """Raised when a command or file copy on a provisioned machine fails."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class ProvisioningError(ShipyardError):
    """
    Raised by the orchestrator when a provisioning stage fails.

    ``stage`` is either ``"create"`` or ``"bootstrap"``. When the bootstrap
    stage fails the machine already exists and is available as ``machine`` so
    callers can retry the bootstrap alone.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        machine_name: Optional[str] = None,
        address: Optional[str] = None,
        machine=None,
    ):
        super().__init__(message)
        self.stage = stage
        self.machine_name = machine_name
        self.address = address
        self.machine = machine
