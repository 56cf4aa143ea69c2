"""Shared fixtures: fixed clock, record factory and a fake vCenter inventory."""

import datetime
from contextlib import contextmanager

import pytest

from snapshot_report.domain_types import (
    InventoryEvent,
    InventoryVM,
    PowerState,
    RawSnapshot,
    RiskThresholds,
    SnapshotRecord,
)

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def days_ago(days, hours=0):
    return NOW - datetime.timedelta(days=days, hours=hours)


def make_record(vm="vm01", name="snap", size=1.0, age=0, **kwargs):
    return SnapshotRecord(
        vm_name=vm,
        snapshot_name=name,
        created_at=kwargs.pop("created_at", days_ago(age)),
        size_gib=size,
        **kwargs,
    )


class FakeInventory:
    """In-memory stand-in for ``VCenterInventory``."""

    def __init__(self, vms=None, snapshots=None, events=None, failing_events=(), failing_vms=()):
        self.vms = vms or []
        self.snapshots = snapshots or {}
        self.events = events or {}
        self.failing_events = set(failing_events)
        self.failing_vms = set(failing_vms)
        self.event_limits = []

    def list_vms(self, powered_on_only=False):
        if powered_on_only:
            return [vm for vm in self.vms if vm.power_state is PowerState.POWERED_ON]
        return list(self.vms)

    def list_snapshots(self, vm):
        if vm.name in self.failing_vms:
            raise RuntimeError("layout unavailable")
        return list(self.snapshots.get(vm.name, []))

    def query_recent_events(self, vm, max_samples):
        self.event_limits.append(max_samples)
        if vm.name in self.failing_events:
            raise RuntimeError("event manager timeout")
        return list(self.events.get(vm.name, []))[:max_samples]


@pytest.fixture
def thresholds():
    return RiskThresholds(medium_risk_days=3, high_risk_days=7)


@pytest.fixture
def scenario_records():
    return [
        make_record(vm="web01", name="pre-patch", size=60.0, age=1),
        make_record(vm="db01", name="upgrade", size=5.0, age=4),
        make_record(vm="app01", name="before-deploy", size=20.0, age=10),
    ]


@pytest.fixture
def fake_inventory():
    vms = [
        InventoryVM("web01", PowerState.POWERED_ON),
        InventoryVM("db01", PowerState.POWERED_OFF),
        InventoryVM("empty01", PowerState.POWERED_ON),
    ]
    snapshots = {
        "web01": [
            RawSnapshot("pre-patch", days_ago(2), "Before June patching", 12.5),
            RawSnapshot("child", days_ago(1), "", 0.75),
        ],
        "db01": [RawSnapshot("upgrade", days_ago(9), "DB upgrade", 40.0)],
    }
    events = {
        "web01": [
            InventoryEvent(days_ago(1), "CORP\\alice", "Task: Create virtual machine snapshot", True),
            InventoryEvent(days_ago(2), "bob@corp.example.com",
                           "Created snapshot pre-patch on web01", True),
        ],
    }
    return FakeInventory(vms, snapshots, events)


@pytest.fixture
def session_factory(fake_inventory):
    calls = {"entered": 0, "exited": 0}

    @contextmanager
    def factory(settings):
        calls["entered"] += 1
        try:
            yield fake_inventory
        finally:
            calls["exited"] += 1

    factory.calls = calls
    return factory
