# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/certs/generator.py

from __future__ import annotations

import getpass
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from ipaddress import ip_address
from pathlib import Path
from typing import Protocol, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shipyard.errors import CertificateError

log = logging.getLogger("shipyard")

BOOTSTRAP_ORG_SUFFIX = "<bootstrap>"
CERT_VALIDITY = timedelta(days=1080)


class CertGenerator(Protocol):
    def generate_cert(
        self,
        hosts: Sequence[str],
        cert_file: Path,
        key_file: Path,
        ca_file: Path,
        ca_key_file: Path,
        org: str,
        bits: int,
    ) -> None: ...


def get_username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def bootstrap_org(username: str | None = None) -> str:
    return f"{username or get_username()}.{BOOTSTRAP_ORG_SUFFIX}"


def _san_entries(hosts: Sequence[str]) -> list[x509.GeneralName]:
    entries: list[x509.GeneralName] = []
    for host in hosts:
        try:
            entries.append(x509.IPAddress(ip_address(host)))
        except ValueError:
            entries.append(x509.DNSName(host))
    return entries


def _write_atomic(path: Path, data: bytes, mode: int) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class X509CertGenerator:
    """
    Issues server certificates signed by the installation CA.

    The key is written before the certificate so that an existing
    certificate file always has its key next to it.
    """

    def generate_cert(
        self,
        hosts: Sequence[str],
        cert_file: Path,
        key_file: Path,
        ca_file: Path,
        ca_key_file: Path,
        org: str,
        bits: int = 2048,
    ) -> None:
        cert_file, key_file = Path(cert_file), Path(key_file)
        try:
            ca_cert = x509.load_pem_x509_certificate(Path(ca_file).read_bytes())
            ca_key = serialization.load_pem_private_key(Path(ca_key_file).read_bytes(), password=None)
        except (OSError, ValueError, TypeError) as e:
            raise CertificateError(f"failed to load CA material from {ca_file}: {e}") from e

        log.debug("Generating %d-bit key for hosts=%s org=%s", bits, list(hosts), org)
        key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        now = datetime.now(timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, org)]))
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + CERT_VALIDITY)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=True,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([x509.ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        )
        if hosts:
            builder = builder.add_extension(x509.SubjectAlternativeName(_san_entries(hosts)), critical=False)

        try:
            cert = builder.sign(ca_key, hashes.SHA256())
        except (TypeError, ValueError) as e:
            raise CertificateError(f"failed to sign certificate with {ca_key_file}: {e}") from e

        key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
        try:
            _write_atomic(key_file, key_pem, 0o600)
            _write_atomic(cert_file, cert.public_bytes(serialization.Encoding.PEM), 0o644)
        except OSError as e:
            raise CertificateError(f"failed to write {cert_file}: {e}") from e
