from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

NO_DESCRIPTION = "No description"
UNKNOWN_CREATOR = "Unknown"


class PowerState(str, Enum):
    POWERED_ON = "PoweredOn"
    POWERED_OFF = "PoweredOff"
    SUSPENDED = "Suspended"


class RiskTier(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(slots=True)
class SnapshotRecord:
    """One active snapshot as found in the inventory.

    Attributes:
        vm_name: Name of the owning virtual machine.
        snapshot_name: Snapshot name as shown in vCenter.
        created_at: Creation timestamp, time zone as delivered by vCenter.
        description: Free text; empty values become ``NO_DESCRIPTION``.
        size_gib: Disk usage in GiB, unrounded.
        creator: User that created the snapshot, ``UNKNOWN_CREATOR`` if unresolved.
        power_state: Power state of the VM at collection time (optional).
    """

    vm_name: str
    snapshot_name: str
    created_at: datetime.datetime
    description: str = NO_DESCRIPTION
    size_gib: float = 0.0
    creator: str = UNKNOWN_CREATOR
    power_state: Optional[PowerState] = None

    def __post_init__(self) -> None:
        if not self.description or not self.description.strip():
            self.description = NO_DESCRIPTION
        if not self.creator or not self.creator.strip():
            self.creator = UNKNOWN_CREATOR
        if self.size_gib is None or self.size_gib < 0:
            raise ValueError(f"snapshot size must be non-negative, got {self.size_gib!r}")
        self.size_gib = float(self.size_gib)


@dataclass(frozen=True, slots=True)
class RiskThresholds:
    """Age boundaries (in days) between the three risk tiers."""

    medium_risk_days: int = 3
    high_risk_days: int = 7

    def __post_init__(self) -> None:
        if self.medium_risk_days < 0:
            raise ValueError("medium_risk_days must be >= 0")
        if self.high_risk_days <= self.medium_risk_days:
            raise ValueError("high_risk_days must be greater than medium_risk_days")

    def classify(self, age_days: int) -> RiskTier:
        if age_days >= self.high_risk_days:
            return RiskTier.HIGH
        if age_days >= self.medium_risk_days:
            return RiskTier.MEDIUM
        return RiskTier.LOW

    def labels(self) -> dict[RiskTier, str]:
        """Human readable day range per tier, used by the report legend."""
        last_medium = self.high_risk_days - 1
        if last_medium == self.medium_risk_days:
            medium = f"{self.medium_risk_days} days"
        else:
            medium = f"{self.medium_risk_days}-{last_medium} days"
        return {
            RiskTier.LOW: f"< {self.medium_risk_days} days",
            RiskTier.MEDIUM: medium,
            RiskTier.HIGH: f"{self.high_risk_days}+ days",
        }


@dataclass(frozen=True, slots=True)
class ClassifiedSnapshot:
    record: SnapshotRecord
    age_days: int
    risk_tier: RiskTier


@dataclass(frozen=True, slots=True)
class ReportStatistics:
    """Aggregates over one run. All fields are zero for an empty inventory."""

    total_count: int = 0
    total_size_gib: float = 0.0
    average_size_gib: float = 0.0
    average_age_days: float = 0.0
    oldest_age_days: int = 0
    high_risk_count: int = 0
    medium_risk_count: int = 0
    low_risk_count: int = 0


@dataclass(frozen=True, slots=True)
class VMSummary:
    vm_name: str
    snapshot_count: int
    total_size_gib: float
    worst_tier: RiskTier


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    sent: bool
    backup_path: Optional[str] = None
    reason: str = ""


# Raw shapes handed out by the inventory connection. ``ref`` keeps the
# underlying API object so follow-up queries can be issued against it.

@dataclass(slots=True)
class InventoryVM:
    name: str
    power_state: Optional[PowerState] = None
    ref: Any = field(default=None, repr=False, compare=False)


@dataclass(slots=True)
class RawSnapshot:
    name: str
    created_at: datetime.datetime
    description: str = ""
    size_gib: Optional[float] = None
    ref: Any = field(default=None, repr=False, compare=False)


@dataclass(slots=True)
class InventoryEvent:
    created_at: datetime.datetime
    user_name: str = ""
    message: str = ""
    is_snapshot_creation: bool = False


# Convenience alias for report bodies (plain, HTML)
ReportBodies = Tuple[str, str]

__all__ = [
    "NO_DESCRIPTION",
    "UNKNOWN_CREATOR",
    "PowerState",
    "RiskTier",
    "SnapshotRecord",
    "RiskThresholds",
    "ClassifiedSnapshot",
    "ReportStatistics",
    "VMSummary",
    "DeliveryResult",
    "InventoryVM",
    "RawSnapshot",
    "InventoryEvent",
    "ReportBodies",
]
