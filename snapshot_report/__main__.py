"""Entry point for ``python -m snapshot_report``."""

from snapshot_report.main import cli

if __name__ == "__main__":
    cli()
