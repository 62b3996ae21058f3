from __future__ import annotations

from pathlib import Path

import pytest

from fakes import make_ca


@pytest.fixture(scope="session")
def ca_dir(tmp_path_factory) -> Path:
    return make_ca(tmp_path_factory.mktemp("ca"))


@pytest.fixture
def store_base(tmp_path: Path, ca_dir: Path) -> Path:
    """An install base with CA material in place for the 'demo' installation."""
    base = tmp_path / "installs"
    certs = base / "demo" / "certs"
    certs.mkdir(parents=True)
    for f in ca_dir.iterdir():
        (certs / f.name).write_bytes(f.read_bytes())
    return base
