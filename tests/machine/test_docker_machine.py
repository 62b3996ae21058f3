import io
import json
import shutil
import types

import pytest

import shipyard.machine.docker_machine as mod
from shipyard.errors import BackendError, BackendInitError
from shipyard.machine.docker_machine import DockerMachineAPI, driver_flags


class SpyRun:
    """Stands in for subprocess.run; answers per docker-machine subcommand."""

    def __init__(self, responses=None, failures=None):
        self.calls = []
        self.responses = responses or {}
        self.failures = failures or {}

    def __call__(self, argv, capture_output=False, text=False, check=False):
        self.calls.append(argv)
        sub = argv[3]
        if sub in self.failures:
            return types.SimpleNamespace(returncode=1, stdout="", stderr=self.failures[sub])
        return types.SimpleNamespace(returncode=0, stdout=self.responses.get(sub, ""), stderr="")


INSPECT = {
    "DriverName": "amazonec2",
    "Driver": {
        "IPAddress": "54.1.2.3",
        "PrivateIPAddress": "172.31.0.10",
        "SSHUser": "ubuntu",
    },
    "HostOptions": {"AuthOptions": {"ServerCertSANs": ["54.1.2.3"]}},
}


@pytest.fixture(autouse=True)
def _binary(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda b: f"/usr/local/bin/{b}")


def _api(tmp_path, spy, **kw):
    return DockerMachineAPI(store_path=tmp_path / "demo", runner=spy, out_writer=io.StringIO(), **kw)


def test_driver_flags():
    flags = driver_flags({
        "swarm-master": False,
        "engine-install-url": "",
        "virtualbox-memory": 2048,
        "amazonec2-use-private-address": True,
        "engine-opt": ["log-driver=json-file", "max-concurrent-downloads=4"],
        "skip": None,
    })
    assert flags == [
        "--amazonec2-use-private-address",
        "--engine-install-url", "",
        "--engine-opt", "log-driver=json-file",
        "--engine-opt", "max-concurrent-downloads=4",
        "--virtualbox-memory", "2048",
    ]


def test_missing_binary(monkeypatch, tmp_path):
    monkeypatch.setattr(shutil, "which", lambda b: None)
    with pytest.raises(BackendInitError):
        _api(tmp_path, SpyRun())


def test_ca_material_is_copied_into_store(tmp_path, ca_dir):
    api = _api(tmp_path, SpyRun(), ca_path=ca_dir)
    for name in ("ca.pem", "ca-key.pem", "cert.pem", "key.pem"):
        assert (api.certs_path / name).read_bytes() == (ca_dir / name).read_bytes()


def test_missing_ca_file(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(BackendInitError, match="ca.pem"):
        _api(tmp_path, SpyRun(), ca_path=empty)


def test_create_machine(tmp_path):
    spy = SpyRun(responses={"inspect": json.dumps(INSPECT)})
    api = _api(tmp_path, spy)

    m = api.create_machine(
        name="demo-1",
        driver_name="amazonec2",
        params={"amazonec2-region": "us-east-1", "swarm-master": False},
        registry_mirror="http://mirror:5000",
    )

    create = spy.calls[0]
    assert create[:3] == ["/usr/local/bin/docker-machine", "--storage-path", str(tmp_path / "demo")]
    assert create[3:] == [
        "create", "--driver", "amazonec2",
        "--engine-registry-mirror", "http://mirror:5000",
        "--amazonec2-region", "us-east-1",
        "demo-1",
    ]
    assert m.name == "demo-1"
    assert m.address == "54.1.2.3"
    assert m.private_ip == "172.31.0.10"
    assert m.ssh_username == "ubuntu"
    assert m.driver_name == "amazonec2"
    assert m.host.auth_options.server_cert_sans == ["54.1.2.3"]
    assert m.host.channel.key_path == tmp_path / "demo" / "machines" / "demo-1" / "id_rsa"


def test_private_ip_falls_back_to_machine_ip(tmp_path):
    inspect = {"Driver": {}, "HostOptions": {}}
    spy = SpyRun(responses={"inspect": json.dumps(inspect), "ip": "192.168.99.100\n"})
    m = _api(tmp_path, spy).get_machine("demo-1")
    assert m.address == m.private_ip == "192.168.99.100"
    assert m.ssh_username == "docker"
    assert m.host.auth_options is None


def test_create_failure_carries_stderr(tmp_path):
    spy = SpyRun(failures={"create": "Error creating machine: quota"})
    with pytest.raises(BackendError, match="quota"):
        _api(tmp_path, spy).create_machine(name="demo-1", driver_name="virtualbox", params={})


def test_output_reaches_writers(tmp_path):
    spy = SpyRun(
        responses={"create": "Running pre-create checks...\n", "inspect": json.dumps(INSPECT)},
    )
    out, err = io.StringIO(), io.StringIO()
    api = DockerMachineAPI(store_path=tmp_path / "demo", runner=spy, out_writer=out, err_writer=err)

    api.create_machine(name="demo-1", driver_name="amazonec2", params={})
    assert "Running pre-create checks..." in out.getvalue()
    assert '"DriverName"' not in out.getvalue()

    spy.failures["rm"] = "Error removing host: locked\n"
    spy.responses["ls"] = "demo-1\n"
    with pytest.raises(BackendError):
        api.delete_all()
    assert err.getvalue() == "Error removing host: locked\n"


def test_configure_auth_persists_sans(tmp_path):
    spy = SpyRun(responses={"inspect": json.dumps(INSPECT)})
    api = _api(tmp_path, spy)
    machine_dir = api.machine_dir("demo-1")
    machine_dir.mkdir(parents=True)
    (machine_dir / "config.json").write_text(json.dumps({"HostOptions": {"AuthOptions": {}}}))

    m = api.get_machine("demo-1")
    m.host.auth_options.server_cert_sans.append("172.31.0.10")
    m.host.configure_auth()

    saved = json.loads((machine_dir / "config.json").read_text())
    assert saved["HostOptions"]["AuthOptions"]["ServerCertSANs"] == ["54.1.2.3", "172.31.0.10"]
    assert spy.calls[-1][3:] == ["regenerate-certs", "--force", "demo-1"]


def test_configure_auth_without_config(tmp_path):
    spy = SpyRun(responses={"inspect": json.dumps(INSPECT)})
    m = _api(tmp_path, spy).get_machine("demo-1")
    with pytest.raises(BackendError):
        m.host.configure_auth()


def test_delete_all_removes_every_machine(tmp_path):
    spy = SpyRun(responses={"ls": "demo-1\ndemo-2\n"})
    _api(tmp_path, spy).delete_all()
    assert [c[3:] for c in spy.calls] == [["ls", "-q"], ["rm", "-y", "demo-1"], ["rm", "-y", "demo-2"]]


def test_close_closes_ssh_sessions(tmp_path, monkeypatch):
    closed = []
    monkeypatch.setattr(mod.SSHChannel, "close", lambda self: closed.append(self.address))
    spy = SpyRun(responses={"inspect": json.dumps(INSPECT)})
    api = _api(tmp_path, spy)
    api.get_machine("demo-1")
    api.close()
    assert closed == ["54.1.2.3"]
