"""Application entrypoint.

High-level workflow:
    1. Connect to vCenter and collect snapshots (see `inventory.collect`).
    2. Classify by age and aggregate (see `risk.classify`, `risk.aggregate`).
    3. Render text + HTML reports (see `reporting.render_reports`).
    4. Optionally save the HTML report to a file (see `reporting.save_report`).
    5. Email it, falling back to a backup file (see `delivery.deliver`).

Settings: loaded once by `Settings.load` and passed down explicitly.
"""

from __future__ import annotations

import datetime
import logging
import pathlib
import sys
from typing import Any, Callable, ContextManager, List, Optional

import click

from .delivery import deliver
from .domain_types import ClassifiedSnapshot, SnapshotRecord
from .errors import ConfigurationError, InventoryConnectionError, RenderError
from .inventory import collect, vcenter_session
from .reporting import default_report_path, render_reports, save_report
from .risk import aggregate, classify, summarize_by_vm
from .settings import LOG_LEVELS, SUCCESS, Settings, configure_logging

logger = logging.getLogger("snapreport")

SessionFactory = Callable[[Settings], ContextManager[Any]]


def run(
    settings: Settings,
    test_mode: bool = False,
    save_path: Optional[pathlib.Path] = None,
    session_factory: SessionFactory = vcenter_session,
    now: Optional[datetime.datetime] = None,
) -> int:
    """Run one report cycle and return the process exit code.

    Steps:
      * Collect snapshots inside a vCenter session (always disconnected).
      * Classify, aggregate and render.
      * Save to ``save_path`` when given; email unless ``test_mode``.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)

    try:
        with session_factory(settings) as inventory:
            records: List[SnapshotRecord] = collect(
                inventory,
                powered_on_only=settings.powered_on_only,
                event_sample_limit=settings.event_sample_limit,
            )
    except InventoryConnectionError as e:
        logger.error("%s", e)
        return 1

    classified: List[ClassifiedSnapshot] = classify(
        records, settings.thresholds, now=now, sort_by=settings.sort_by
    )
    stats = aggregate(classified)
    logger.info(
        "%d snapshot(s), %.2f GiB total, oldest %d days (high %d, medium %d, low %d)",
        stats.total_count,
        stats.total_size_gib,
        stats.oldest_age_days,
        stats.high_risk_count,
        stats.medium_risk_count,
        stats.low_risk_count,
    )
    for vm in summarize_by_vm(classified)[:3]:
        logger.info("  %s: %d snapshot(s), %.2f GiB", vm.vm_name, vm.snapshot_count, vm.total_size_gib)

    try:
        text_body, html_body = render_reports(
            classified,
            stats,
            settings.source_label,
            settings.thresholds,
            generated_at=now.replace(microsecond=0),
            size_rounding=settings.size_rounding,
            template_dir=settings.template_dir,
        )
    except RenderError as e:
        logger.error("%s", e)
        return 1

    if save_path is not None:
        try:
            save_report(html_body, save_path)
        except OSError as e:
            logger.error("Could not save report to %s: %s", save_path, e)

    if test_mode:
        logger.info("Test mode: email delivery skipped.")
        return 0

    result = deliver(
        html_body,
        settings.email,
        stats,
        settings.source_label,
        text_body=text_body,
        now=now.astimezone(),
    )
    if result.sent:
        logger.log(SUCCESS, "Snapshot report completed.")
    elif result.backup_path:
        logger.warning("Report not emailed (%s); backup at %s", result.reason, result.backup_path)
    elif result.reason.startswith("suppressed"):
        logger.log(SUCCESS, "Snapshot report completed; nothing to send.")
    else:
        logger.error("Report could not be delivered or saved: %s", result.reason)
    return 0


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=pathlib.Path),
    help="YAML config file; environment variables override its values.",
)
@click.option("--test-mode", is_flag=True, help="Build the report but do not send email.")
@click.option("--save-to-file", is_flag=True, help="Also write the HTML report to a file.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=pathlib.Path),
    help="Path for --save-to-file (default: BACKUP_DIR/snapshot_report_<source>_<time>.html).",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Override LOG_LEVEL.",
)
def cli(
    config_path: Optional[pathlib.Path],
    test_mode: bool,
    save_to_file: bool,
    output_path: Optional[pathlib.Path],
    log_level: Optional[str],
) -> None:
    """Report active vCenter snapshots by age risk and email the result."""
    try:
        settings = Settings.load(config_path)
        settings.validate(test_mode=test_mode)
    except ConfigurationError as e:
        configure_logging(log_level.upper() if log_level else "INFO")
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    configure_logging(log_level.upper() if log_level else settings.log_level)
    save_path = None
    if save_to_file:
        save_path = output_path or default_report_path(
            settings.email.backup_dir, settings.source_label
        )
    sys.exit(run(settings, test_mode=test_mode, save_path=save_path))


if __name__ == "__main__":
    cli()
