"""vCenter inventory access and snapshot collection.

This module encapsulates logic for:
  * Connecting to / disconnecting from vCenter with pyVmomi.
  * Enumerating VMs (all or powered-on only) and flattening their snapshot trees.
  * Reading recent VM events to find out who created each snapshot.
  * Turning all of the above into a flat list of ``SnapshotRecord``.

``collect`` only depends on the three query methods of ``VCenterInventory``,
any object offering ``list_vms``, ``list_snapshots`` and
``query_recent_events`` can stand in for it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set
import datetime, http.client, logging, re, ssl

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from .domain_types import (
    InventoryEvent,
    InventoryVM,
    PowerState,
    RawSnapshot,
    SnapshotRecord,
    UNKNOWN_CREATOR,
)
from .errors import EnrichmentUnavailable, InventoryConnectionError, PartialCollectionError
from .settings import Settings

logger = logging.getLogger("snapreport.inventory")

GIB = 1024 ** 3
PROGRESS_EVERY = 25
# vCenter refuses collector pages larger than this
MAX_EVENT_PAGE = 1000
# Creation task and snapshot timestamp are a few seconds apart at most
CREATION_MATCH_WINDOW = datetime.timedelta(minutes=2)
SNAPSHOT_TASK_ID = "VirtualMachine.createSnapshot"
# Message vCenter logs for every snapshot task; never names the snapshot
GENERIC_TASK_MESSAGE = "create virtual machine snapshot"

_POWER_STATES = {
    "poweredOn": PowerState.POWERED_ON,
    "poweredOff": PowerState.POWERED_OFF,
    "suspended": PowerState.SUSPENDED,
}


class VCenterInventory:
    """Thin query layer over a pyVmomi service instance."""

    def __init__(self, service_instance: Any) -> None:
        self.service_instance = service_instance
        self.content = service_instance.RetrieveContent()

    def list_vms(self, powered_on_only: bool = False) -> List[InventoryVM]:
        view = self.content.viewManager.CreateContainerView(
            self.content.rootFolder, [vim.VirtualMachine], True
        )
        try:
            vms: List[InventoryVM] = []
            for vm in view.view:
                power_state = _POWER_STATES.get(str(vm.runtime.powerState))
                if powered_on_only and power_state is not PowerState.POWERED_ON:
                    continue
                vms.append(InventoryVM(name=vm.name, power_state=power_state, ref=vm))
            return vms
        finally:
            view.Destroy()

    def list_snapshots(self, vm: InventoryVM) -> List[RawSnapshot]:
        info = vm.ref.snapshot
        if info is None:
            return []
        layout = vm.ref.layoutEx
        current = _moid(info.currentSnapshot)
        snapshots: List[RawSnapshot] = []
        for node in _walk(info.rootSnapshotList):
            snapshot_id = _moid(node.snapshot)
            try:
                child_ids = [_moid(c.snapshot) for c in node.childSnapshotList or []]
                size_bytes = snapshot_size_bytes(
                    layout, snapshot_id, child_ids, is_current=snapshot_id == current
                )
            except (AttributeError, TypeError, KeyError) as e:
                # collect() skips records without a size
                logger.warning("%s: cannot size snapshot %s: %s", vm.name, node.name, e)
                size_bytes = None
            snapshots.append(
                RawSnapshot(
                    name=node.name,
                    created_at=node.createTime,
                    description=node.description or "",
                    size_gib=None if size_bytes is None else size_bytes / GIB,
                    ref=node.snapshot,
                )
            )
        return snapshots

    def query_recent_events(self, vm: InventoryVM, max_samples: int) -> List[InventoryEvent]:
        """Most recent events for ``vm``, newest first."""
        spec = vim.event.EventFilterSpec(
            entity=vim.event.EventFilterSpec.ByEntity(entity=vm.ref, recursion="self")
        )
        collector = self.content.eventManager.CreateCollectorForEvents(filter=spec)
        try:
            collector.SetCollectorPageSize(max(1, min(max_samples, MAX_EVENT_PAGE)))
            raw_events = list(collector.latestPage or [])
        finally:
            collector.DestroyCollector()
        events = [_to_event(e) for e in raw_events]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[:max_samples]


def _moid(ref: Any) -> Optional[str]:
    return getattr(ref, "_moId", None) if ref is not None else None


def _walk(nodes: Any) -> Iterator[Any]:
    """Depth-first walk over a snapshot tree, parents before children."""
    for node in nodes or []:
        yield node
        yield from _walk(node.childSnapshotList)


def _chain_keys(disks: Any) -> Set[int]:
    return {key for disk in disks or [] for link in disk.chain or [] for key in link.fileKey}


def snapshot_size_bytes(
    layout: Any, snapshot_id: Optional[str], child_ids: List[Optional[str]], is_current: bool = False
) -> Optional[int]:
    """Bytes attributable to one snapshot, from the VM's ``layoutEx``.

    A snapshot owns its state files (``dataKey``/``memoryKey``) plus the delta
    disks that were started when it was taken: files present in a child's disk
    chain (or the live disk chain for the current snapshot) but not in its own.
    Returns None when the layout does not describe the snapshot.
    """
    if layout is None:
        return None
    sizes: Dict[int, int] = {f.key: f.size or 0 for f in layout.file or []}
    by_id = {_moid(s.key): s for s in layout.snapshot or []}
    snap = by_id.get(snapshot_id)
    if snap is None:
        return None

    own = _chain_keys(snap.disk)
    successors = [by_id[c].disk for c in child_ids if c in by_id]
    if is_current:
        successors.append(layout.disk)
    delta: Set[int] = set()
    for disks in successors:
        delta |= _chain_keys(disks) - own

    keys = delta | {snap.dataKey}
    memory_key = getattr(snap, "memoryKey", -1)
    if memory_key is not None and memory_key >= 0:
        keys.add(memory_key)
    return sum(sizes.get(k, 0) for k in keys)


def _to_event(event: Any) -> InventoryEvent:
    message = event.fullFormattedMessage or ""
    is_creation = False
    if isinstance(event, vim.event.TaskEvent) and event.info is not None:
        is_creation = event.info.descriptionId == SNAPSHOT_TASK_ID
    if not is_creation:
        lowered = message.lower()
        is_creation = "snapshot" in lowered and "creat" in lowered
    return InventoryEvent(
        created_at=event.createdTime,
        user_name=event.userName or "",
        message=message,
        is_snapshot_creation=is_creation,
    )


def connect(settings: Settings) -> VCenterInventory:
    """Open a vCenter session or raise ``InventoryConnectionError``."""
    context = None if settings.vcenter_verify_ssl else ssl._create_unverified_context()
    logger.info("Connecting to vCenter %s as %s", settings.vcenter_server, settings.vcenter_user)
    try:
        si = SmartConnect(
            host=settings.vcenter_server,
            port=settings.vcenter_port,
            user=settings.vcenter_user,
            pwd=settings.vcenter_password,
            sslContext=context,
            httpConnectionTimeout=settings.vcenter_timeout,
        )
    except vim.fault.InvalidLogin as e:
        raise InventoryConnectionError(
            f"vCenter {settings.vcenter_server} rejected credentials for {settings.vcenter_user}"
        ) from e
    except (vmodl.MethodFault, OSError, http.client.HTTPException) as e:
        raise InventoryConnectionError(
            f"Could not connect to vCenter {settings.vcenter_server}: {e}"
        ) from e
    return VCenterInventory(si)


def disconnect(inventory: VCenterInventory) -> None:
    """Best-effort logout; failures are logged, never raised."""
    try:
        Disconnect(inventory.service_instance)
        logger.debug("Disconnected from vCenter")
    except Exception as e:
        logger.warning("Error while disconnecting from vCenter: %s", e)


@contextmanager
def vcenter_session(settings: Settings) -> Iterator[VCenterInventory]:
    inventory = connect(settings)
    try:
        yield inventory
    finally:
        disconnect(inventory)


def match_creator(snapshot: RawSnapshot, events: List[InventoryEvent]) -> str:
    """Return the user that created ``snapshot`` according to ``events``.

    Events are expected newest first. A creation event mentioning the snapshot
    name wins; otherwise the creation event closest in time to the snapshot
    (within ``CREATION_MATCH_WINDOW``) is used. Raises
    ``EnrichmentUnavailable`` when nothing matches.
    """
    creations = [e for e in events if e.is_snapshot_creation and e.user_name]
    if snapshot.name:
        pattern = re.compile(r"(?<![\w-])" + re.escape(snapshot.name.lower()) + r"(?![\w-])")
        for event in creations:
            text = event.message.lower().replace(GENERIC_TASK_MESSAGE, " ")
            if pattern.search(text):
                return event.user_name

    best: Optional[InventoryEvent] = None
    best_gap: Optional[datetime.timedelta] = None
    for event in creations:
        try:
            gap = abs(event.created_at - snapshot.created_at)
        except TypeError:
            # naive vs aware timestamps; cannot compare
            continue
        if gap <= CREATION_MATCH_WINDOW and (best_gap is None or gap < best_gap):
            best, best_gap = event, gap
    if best is None:
        raise EnrichmentUnavailable(f"no creation event for snapshot {snapshot.name!r}")
    return best.user_name


def _build_record(vm: InventoryVM, raw: RawSnapshot, creator: str) -> SnapshotRecord:
    if raw.size_gib is None:
        raise PartialCollectionError(f"size unavailable for {vm.name}/{raw.name}")
    if raw.created_at is None:
        raise PartialCollectionError(f"creation time missing for {vm.name}/{raw.name}")
    try:
        return SnapshotRecord(
            vm_name=vm.name,
            snapshot_name=raw.name,
            created_at=raw.created_at,
            description=raw.description,
            size_gib=raw.size_gib,
            creator=creator,
            power_state=vm.power_state,
        )
    except (TypeError, ValueError) as e:
        raise PartialCollectionError(f"malformed snapshot {vm.name}/{raw.name}: {e}") from e


def _lookup_creator(vm: InventoryVM, raw: RawSnapshot,
                    events: Optional[List[InventoryEvent]]) -> str:
    if events is None:
        return UNKNOWN_CREATOR
    try:
        return match_creator(raw, events)
    except EnrichmentUnavailable as e:
        logger.debug("%s: %s", vm.name, e)
        return UNKNOWN_CREATOR


def collect(
    inventory: Any, powered_on_only: bool = False, event_sample_limit: int = 1000
) -> List[SnapshotRecord]:
    """Collect one ``SnapshotRecord`` per snapshot across the inventory.

    Failures for a single VM or snapshot are logged and skipped; a failed event
    query only costs the creator name.
    """
    vms = inventory.list_vms(powered_on_only=powered_on_only)
    logger.info("Found %d VM(s)%s", len(vms), " (powered on only)" if powered_on_only else "")
    records: List[SnapshotRecord] = []
    for index, vm in enumerate(vms, start=1):
        if index % PROGRESS_EVERY == 0:
            logger.info("Processed %d/%d VMs, %d snapshot(s) so far", index, len(vms), len(records))
        try:
            raw_snapshots = inventory.list_snapshots(vm)
        except Exception as e:
            logger.warning("Skipping VM %s: could not list snapshots: %s", vm.name, e)
            continue
        if not raw_snapshots:
            continue

        events: Optional[List[InventoryEvent]]
        try:
            events = inventory.query_recent_events(vm, event_sample_limit)
        except Exception as e:
            logger.warning("Event lookup failed for %s, creators will be Unknown: %s", vm.name, e)
            events = None

        for raw in raw_snapshots:
            creator = _lookup_creator(vm, raw, events)
            try:
                records.append(_build_record(vm, raw, creator))
            except PartialCollectionError as e:
                logger.warning("Skipping snapshot: %s", e)
    logger.info("Collected %d snapshot(s) from %d VM(s)", len(records), len(vms))
    return records
