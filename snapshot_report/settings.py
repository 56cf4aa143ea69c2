"""Centralized settings for the snapshot report.

Values are resolved from (lowest to highest precedence) built-in defaults, an
optional YAML config file whose keys are the lower-cased variable names, and
environment variables:

  VCENTER_SERVER (str)  - vCenter host name (required)
  VCENTER_PORT (int)    - vCenter HTTPS port (default: 443)
  VCENTER_USER (str)    - Login user
  VCENTER_PASSWORD (str) - Login password
  VCENTER_CREDENTIAL_FILE (str) - YAML file with ``username`` / ``password`` keys,
                          used for whichever credential is not set directly
  VCENTER_VERIFY_SSL (bool) - Verify the vCenter certificate (default: false)
  VCENTER_TIMEOUT (int) - HTTP connection timeout in seconds (default: 60)
  SOURCE_LABEL (str)    - Label shown in report and subject (default: server name)
  POWERED_ON_ONLY (bool) - Only report snapshots of powered-on VMs (default: false)
  EVENT_SAMPLE_LIMIT (int) - Recent events read per VM for creator lookup (default: 1000)
  MEDIUM_RISK_DAYS (int) - Age at which a snapshot becomes medium risk (default: 3)
  HIGH_RISK_DAYS (int)  - Age at which a snapshot becomes high risk (default: 7)
  SORT_BY (str)         - 'size' (default) or 'age', always descending
  SIZE_ROUNDING (str)   - 'round' (default) or 'floor' for displayed sizes
  WARNING_MEDIUM_COUNT (int) - Medium-risk count above which the subject is
                          marked as a warning (default: 0)
  SEND_EMPTY_REPORT (bool) - Mail the report even when no snapshots exist (default: false)
  SMTP_HOST (str)       - SMTP server host (default: smtp.example.com)
  SMTP_PORT (int)       - SMTP server port (default: 587)
  SMTP_USER (str)       - SMTP username (optional)
  SMTP_PASS (str)       - SMTP password (optional)
  SMTP_USE_TLS (bool)   - Issue STARTTLS before login (default: true)
  SMTP_TIMEOUT (int)    - SMTP socket timeout in seconds (default: 30)
  MAIL_FROM (str)       - From address (default: snapshot-report@example.com)
  MAIL_TO (str)         - Comma separated recipient list (required unless in test mode)
  MAIL_CC (str)         - Comma separated CC list (optional)
  SUBJECT_TEMPLATE (str) - Subject format; ``{source}``, ``{date}`` and ``{count}``
                          are substituted
  BACKUP_DIR (str)      - Directory for backup copies of undelivered reports (default: ./reports)
  TEMPLATE_DIR (str)    - Jinja2 template directory (default: bundled templates)
  LOG_LEVEL (str)       - Logging level (default: INFO)
"""
from __future__ import annotations

from dataclasses import dataclass, field
import os, pathlib, logging
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .domain_types import RiskThresholds
from .errors import ConfigurationError

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

DEFAULT_TEMPLATE_DIR = pathlib.Path(__file__).parent / "templates"
SORT_KEYS = ("size", "age")
ROUNDING_MODES = ("round", "floor")
LOG_LEVELS = ("DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EmailSettings:
    smtp_host: str = "smtp.example.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_use_tls: bool = True
    smtp_timeout: int = 30
    mail_from: str = "snapshot-report@example.com"
    mail_to: List[str] = field(default_factory=list)
    mail_cc: List[str] = field(default_factory=list)
    subject_template: str = "VMware Snapshot Report - {source} - {date}"
    warning_medium_count: int = 0
    send_empty_report: bool = False
    backup_dir: pathlib.Path = pathlib.Path("reports")


@dataclass(frozen=True)
class Settings:
    vcenter_server: str
    vcenter_port: int
    vcenter_user: str
    vcenter_password: str
    vcenter_verify_ssl: bool
    vcenter_timeout: int
    source_label: str
    powered_on_only: bool
    event_sample_limit: int
    thresholds: RiskThresholds
    sort_by: str  # 'size' or 'age'
    size_rounding: str  # 'round' or 'floor'
    email: EmailSettings
    template_dir: pathlib.Path
    log_level: str

    @staticmethod
    def load(
        config_file: Optional[pathlib.Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        env = os.environ if environ is None else environ
        file_values = _read_yaml(config_file) if config_file else {}

        def get(name: str, default: str = "") -> str:
            if name in env:
                return env[name]
            value = file_values.get(name.lower())
            if value is None:
                return default
            if isinstance(value, list):
                return ",".join(str(v) for v in value)
            return str(value)

        server = get("VCENTER_SERVER").strip()
        if not server:
            raise ConfigurationError("VCENTER_SERVER is required")

        user = get("VCENTER_USER")
        password = get("VCENTER_PASSWORD")
        credential_file = get("VCENTER_CREDENTIAL_FILE")
        if credential_file and (not user or not password):
            creds = _read_yaml(pathlib.Path(credential_file))
            user = user or str(creds.get("username", ""))
            password = password or str(creds.get("password", ""))

        sort_by = get("SORT_BY", "size").lower()
        if sort_by not in SORT_KEYS:
            raise ConfigurationError(f"SORT_BY must be one of {SORT_KEYS}, got {sort_by!r}")
        size_rounding = get("SIZE_ROUNDING", "round").lower()
        if size_rounding not in ROUNDING_MODES:
            raise ConfigurationError(
                f"SIZE_ROUNDING must be one of {ROUNDING_MODES}, got {size_rounding!r}"
            )

        try:
            thresholds = RiskThresholds(
                medium_risk_days=_int(get("MEDIUM_RISK_DAYS", "3"), "MEDIUM_RISK_DAYS"),
                high_risk_days=_int(get("HIGH_RISK_DAYS", "7"), "HIGH_RISK_DAYS"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid risk thresholds: {e}") from e

        template_dir = pathlib.Path(get("TEMPLATE_DIR", str(DEFAULT_TEMPLATE_DIR)))
        if not template_dir.is_dir():
            raise ConfigurationError(f"TEMPLATE_DIR {template_dir} is not a directory")

        subject_template = get("SUBJECT_TEMPLATE", "VMware Snapshot Report - {source} - {date}")
        try:
            subject_template.format(source="vc", date="2024-01-01", count=0)
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(
                f"SUBJECT_TEMPLATE {subject_template!r} is invalid; "
                f"only {{source}}, {{date}} and {{count}} are available ({e!r})"
            ) from e

        event_sample_limit = _int(get("EVENT_SAMPLE_LIMIT", "1000"), "EVENT_SAMPLE_LIMIT")
        if event_sample_limit < 1:
            raise ConfigurationError(
                f"EVENT_SAMPLE_LIMIT must be at least 1, got {event_sample_limit}"
            )
        log_level = get("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(f"LOG_LEVEL must be one of {LOG_LEVELS}, got {log_level!r}")

        email = EmailSettings(
            smtp_host=get("SMTP_HOST", "smtp.example.com"),
            smtp_port=_int(get("SMTP_PORT", "587"), "SMTP_PORT"),
            smtp_user=get("SMTP_USER"),
            smtp_pass=get("SMTP_PASS"),
            smtp_use_tls=_bool(get("SMTP_USE_TLS", "true")),
            smtp_timeout=_int(get("SMTP_TIMEOUT", "30"), "SMTP_TIMEOUT"),
            mail_from=get("MAIL_FROM", "snapshot-report@example.com"),
            mail_to=_split(get("MAIL_TO")),
            mail_cc=_split(get("MAIL_CC")),
            subject_template=subject_template,
            warning_medium_count=_int(get("WARNING_MEDIUM_COUNT", "0"), "WARNING_MEDIUM_COUNT"),
            send_empty_report=_bool(get("SEND_EMPTY_REPORT", "false")),
            backup_dir=pathlib.Path(get("BACKUP_DIR", "reports")),
        )

        return Settings(
            vcenter_server=server,
            vcenter_port=_int(get("VCENTER_PORT", "443"), "VCENTER_PORT"),
            vcenter_user=user,
            vcenter_password=password,
            vcenter_verify_ssl=_bool(get("VCENTER_VERIFY_SSL", "false")),
            vcenter_timeout=_int(get("VCENTER_TIMEOUT", "60"), "VCENTER_TIMEOUT"),
            source_label=get("SOURCE_LABEL") or server,
            powered_on_only=_bool(get("POWERED_ON_ONLY", "false")),
            event_sample_limit=event_sample_limit,
            thresholds=thresholds,
            sort_by=sort_by,
            size_rounding=size_rounding,
            email=email,
            template_dir=template_dir,
            log_level=log_level,
        )

    def validate(self, test_mode: bool = False) -> None:
        """Raise ``ConfigurationError`` for settings a run cannot proceed without."""
        if not test_mode:
            if not self.email.mail_to:
                raise ConfigurationError("MAIL_TO is required unless running in test mode")
            if not self.email.mail_from:
                raise ConfigurationError("MAIL_FROM must not be empty")
        if not self.vcenter_user or not self.vcenter_password:
            raise ConfigurationError(
                "vCenter credentials missing; set VCENTER_USER/VCENTER_PASSWORD "
                "or VCENTER_CREDENTIAL_FILE"
            )


def configure_logging(level: str = "INFO") -> None:
    """Configure logging once for the whole process."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _read_yaml(path: pathlib.Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return {str(k).lower(): v for k, v in data.items()}


def _int(raw: str, name: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _bool(raw: str) -> bool:
    return str(raw).strip().lower() in ["true", "1", "yes"]


def _split(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]
