# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/certs/store.py

from __future__ import annotations

import fcntl
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Tuple

from cryptography import x509

from shipyard.errors import CertificateError

REGISTRY_CERT = "registry-cert.pem"
REGISTRY_KEY = "registry-key.pem"
CA_CERT = "ca.pem"
CA_KEY = "ca-key.pem"
CLIENT_CERT = "cert.pem"
CLIENT_KEY = "key.pem"

_LOCK_FILE = ".registry.lock"


class CertStore:
    """
    The ``certs`` directory of one installation.

    CA files are inputs; the registry pair is created once and then reused
    by every machine provisioned for the installation.
    """

    def __init__(self, certs_path: Path):
        self.path = Path(certs_path)
        self._lock = threading.Lock()

    @property
    def registry_cert(self) -> Path:
        return self.path / REGISTRY_CERT

    @property
    def registry_key(self) -> Path:
        return self.path / REGISTRY_KEY

    @property
    def ca_cert(self) -> Path:
        return self.path / CA_CERT

    @property
    def ca_key(self) -> Path:
        return self.path / CA_KEY

    @property
    def client_cert(self) -> Path:
        return self.path / CLIENT_CERT

    @property
    def client_key(self) -> Path:
        return self.path / CLIENT_KEY

    def has_registry_certificate(self) -> bool:
        return self.registry_cert.exists()

    def registry_ip(self) -> str:
        """First IP SAN of the stored registry certificate."""
        try:
            data = self.registry_cert.read_bytes()
        except OSError as e:
            raise CertificateError(f"failed to read {REGISTRY_CERT}: {e}") from e
        try:
            cert = x509.load_pem_x509_certificate(data)
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except (ValueError, x509.ExtensionNotFound) as e:
            raise CertificateError(f"failed to parse registry certificate: {e}") from e
        ips = san.get_values_for_type(x509.IPAddress)
        if not ips:
            raise CertificateError(f"registry certificate {self.registry_cert} has no IP address")
        return str(ips[0])

    def upload_plan(self, certs_base: str, docker_certs: str) -> List[Tuple[Path, str]]:
        """(local, remote) pairs copied to every machine, in copy order."""
        return [
            (self.registry_cert, f"{certs_base}/{REGISTRY_CERT}"),
            (self.registry_key, f"{certs_base}/{REGISTRY_KEY}"),
            (self.ca_key, f"{docker_certs}/{CA_KEY}"),
            (self.ca_cert, f"{docker_certs}/{CA_CERT}"),
            (self.client_cert, f"{docker_certs}/{CLIENT_CERT}"),
            (self.client_key, f"{docker_certs}/{CLIENT_KEY}"),
        ]

    @contextmanager
    def registry_lock(self) -> Iterator[None]:
        """
        Serialises the check-then-generate of the registry pair, across
        threads of this process and across processes sharing the store.
        """
        with self._lock:
            self.path.mkdir(parents=True, exist_ok=True)
            with open(self.path / _LOCK_FILE, "a") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
