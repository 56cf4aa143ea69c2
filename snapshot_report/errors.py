"""Exception hierarchy for the snapshot report.

Only ``ConfigurationError`` and ``InventoryConnectionError`` end a run with a
non-zero exit code. The remaining errors are raised and recovered inside the
component that owns them and surface through logging and ``DeliveryResult``.
"""

from __future__ import annotations


class SnapshotReportError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(SnapshotReportError):
    """Required setting missing or a value could not be parsed."""


class InventoryConnectionError(SnapshotReportError, ConnectionError):
    """vCenter unreachable or credentials rejected."""


class PartialCollectionError(SnapshotReportError):
    """A single VM or snapshot could not be turned into a record."""


class EnrichmentUnavailable(SnapshotReportError):
    """Creator lookup failed; the record keeps its default creator."""


class RenderError(SnapshotReportError):
    """Template rendering failed on otherwise valid data."""


class DeliveryError(SnapshotReportError):
    """Mail transport failure."""


__all__ = [
    "SnapshotReportError",
    "ConfigurationError",
    "InventoryConnectionError",
    "PartialCollectionError",
    "EnrichmentUnavailable",
    "RenderError",
    "DeliveryError",
]
