import pytest

from fakes import FakeBackend, FakeTarget
from shipyard.config.models import ProvisionerConfig
from shipyard.errors import ProvisioningError
from shipyard.machine.fleet import provision_fleet
from shipyard.machine.orchestrator import DockerMachine


def test_fleet_provisions_unique_machines(store_base):
    backend = FakeBackend()
    dm = DockerMachine(ProvisionerConfig(name="demo"), store_base=store_base, api=backend)

    report = provision_fleet(dm, 5, {"virtualbox-memory": 2048}, max_workers=3)

    assert report.ok
    assert sorted(m.name for m in report.machines) == [f"demo-{i}" for i in range(1, 6)]
    assert all(c["params"]["virtualbox-memory"] == 2048 for c in backend.calls)
    # every machine trusts the same registry endpoint
    first_dirs = {t.commands[0] for t in backend.targets.values()}
    assert len(first_dirs) == 1


def test_fleet_collects_failures(store_base):
    def factory(name):
        return FakeTarget(fail_on="tee -a") if name == "demo-2" else FakeTarget()

    backend = FakeBackend(target_factory=factory)
    dm = DockerMachine(ProvisionerConfig(name="demo"), store_base=store_base, api=backend)

    report = provision_fleet(dm, 3, max_workers=1)

    assert not report.ok
    assert len(report.machines) == 2
    assert len(report.errors) == 1
    err = report.errors[0]
    assert isinstance(err, ProvisioningError)
    assert err.machine_name == "demo-2"


def test_fleet_rejects_empty(tmp_path):
    dm = DockerMachine(ProvisionerConfig(name="demo"), store_base=tmp_path, api=FakeBackend())
    with pytest.raises(ValueError):
        provision_fleet(dm, 0)


class FlakyBackend(FakeBackend):
    """Raises a non-shipyard error for one machine."""

    def create_machine(self, *, name, **kw):
        if name == "demo-2":
            raise KeyError("Driver")
        return super().create_machine(name=name, **kw)


def test_fleet_keeps_report_on_unexpected_error(store_base):
    dm = DockerMachine(ProvisionerConfig(name="demo"), store_base=store_base, api=FlakyBackend())

    report = provision_fleet(dm, 3, max_workers=1)

    assert [m.name for m in report.machines] == ["demo-1", "demo-3"]
    assert len(report.errors) == 1
    assert isinstance(report.errors[0], KeyError)
