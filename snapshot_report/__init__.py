"""Age-based risk report for active vCenter VM snapshots."""

__version__ = "1.0.0"
