"""Report delivery: subject line, suppression policy and backup fallback."""

from __future__ import annotations

from typing import Callable, Optional
import datetime, logging
import pathlib

from .domain_types import DeliveryResult, ReportStatistics
from .email_utils import send_email
from .errors import DeliveryError
from .reporting import default_report_path, save_report
from .settings import EmailSettings, SUCCESS

logger = logging.getLogger("snapreport.delivery")

CRITICAL_MARKER = "[CRITICAL]"
WARNING_MARKER = "[WARNING]"

Transport = Callable[[EmailSettings, str, str, Optional[str]], None]


def build_subject(
    statistics: ReportStatistics,
    config: EmailSettings,
    source_label: str,
    today: Optional[datetime.date] = None,
) -> str:
    """Format the subject template and prefix the severity marker.

    High-risk snapshots mark the mail critical; otherwise more medium-risk
    snapshots than ``warning_medium_count`` mark it as a warning.
    """
    today = today or datetime.date.today()
    subject = config.subject_template.format(
        source=source_label, date=today.isoformat(), count=statistics.total_count
    )
    if statistics.high_risk_count > 0:
        return f"{CRITICAL_MARKER} {subject}"
    if statistics.medium_risk_count > config.warning_medium_count:
        return f"{WARNING_MARKER} {subject}"
    return subject


def should_deliver(statistics: ReportStatistics, send_empty_report: bool = False) -> bool:
    if send_empty_report:
        return True
    return statistics.total_count > 0 or statistics.high_risk_count > 0


def write_backup(document: str, backup_dir: pathlib.Path, source_label: str,
                 when: Optional[datetime.datetime] = None) -> pathlib.Path:
    return save_report(document, default_report_path(backup_dir, source_label, when))


def deliver(
    document: str,
    config: EmailSettings,
    statistics: ReportStatistics,
    source_label: str,
    text_body: Optional[str] = None,
    transport: Transport = send_email,
    now: Optional[datetime.datetime] = None,
) -> DeliveryResult:
    """Send ``document`` once; keep a local copy if sending fails.

    Never raises for transport or backup failures, the outcome is described by
    the returned ``DeliveryResult``.
    """
    if not should_deliver(statistics, config.send_empty_report):
        logger.info("No snapshots found; email suppressed.")
        return DeliveryResult(sent=False, reason="suppressed: no snapshots")

    now = now or datetime.datetime.now()
    subject = build_subject(statistics, config, source_label, now.date())
    try:
        transport(config, subject, document, text_body)
    except DeliveryError as e:
        logger.error("Email delivery failed: %s", e)
        reason = str(e)
    else:
        logger.log(SUCCESS, "Report emailed to %s", ", ".join(config.mail_to))
        return DeliveryResult(sent=True)

    try:
        path = write_backup(document, config.backup_dir, source_label, now)
    except OSError as e:
        logger.error("Could not write backup report to %s: %s", config.backup_dir, e)
        return DeliveryResult(sent=False, reason=f"{reason}; backup failed: {e}")
    logger.warning("Report saved to %s instead", path)
    return DeliveryResult(sent=False, backup_path=str(path), reason=reason)
