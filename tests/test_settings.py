"""Tests for settings resolution: defaults, YAML file, environment precedence."""

import pathlib

import pytest

from snapshot_report.errors import ConfigurationError
from snapshot_report.settings import DEFAULT_TEMPLATE_DIR, Settings

BASE_ENV = {"VCENTER_SERVER": "vc01.corp", "VCENTER_USER": "svc", "VCENTER_PASSWORD": "pw"}


def test_defaults():
    s = Settings.load(environ=BASE_ENV)
    assert s.source_label == "vc01.corp"
    assert (s.thresholds.medium_risk_days, s.thresholds.high_risk_days) == (3, 7)
    assert s.sort_by == "size" and s.size_rounding == "round"
    assert s.powered_on_only is False
    assert s.event_sample_limit == 1000
    assert s.email.smtp_port == 587 and s.email.smtp_use_tls is True
    assert s.email.mail_to == []
    assert s.template_dir == DEFAULT_TEMPLATE_DIR
    assert s.log_level == "INFO"


def test_config_file_overridden_by_environment(tmp_path):
    cfg = tmp_path / "report.yaml"
    cfg.write_text(
        "vcenter_server: file-vc\n"
        "medium_risk_days: 2\n"
        "high_risk_days: 3\n"
        "powered_on_only: true\n"
        "mail_to:\n  - a@example.com\n  - b@example.com\n"
        "sort_by: age\n"
    )
    s = Settings.load(cfg, environ={"HIGH_RISK_DAYS": "5", "VCENTER_USER": "u"})
    assert s.vcenter_server == "file-vc"
    assert (s.thresholds.medium_risk_days, s.thresholds.high_risk_days) == (2, 5)
    assert s.powered_on_only is True
    assert s.email.mail_to == ["a@example.com", "b@example.com"]
    assert s.sort_by == "age"
    assert s.vcenter_user == "u"


def test_credential_file_fills_missing_values(tmp_path):
    creds = tmp_path / "creds.yaml"
    creds.write_text("username: file-user\npassword: file-pass\n")
    env = {"VCENTER_SERVER": "vc", "VCENTER_USER": "env-user", "VCENTER_CREDENTIAL_FILE": str(creds)}
    s = Settings.load(environ=env)
    assert s.vcenter_user == "env-user"
    assert s.vcenter_password == "file-pass"


def test_mail_lists_are_split():
    s = Settings.load(environ={**BASE_ENV, "MAIL_TO": "a@x, b@x,,", "MAIL_CC": "c@x"})
    assert s.email.mail_to == ["a@x", "b@x"]
    assert s.email.mail_cc == ["c@x"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"VCENTER_SERVER": ""},
        {"MEDIUM_RISK_DAYS": "7", "HIGH_RISK_DAYS": "7"},
        {"HIGH_RISK_DAYS": "soon"},
        {"SORT_BY": "name"},
        {"SIZE_ROUNDING": "ceil"},
        {"TEMPLATE_DIR": "/nonexistent/templates"},
        {"VCENTER_CREDENTIAL_FILE": "/nonexistent/creds.yaml", "VCENTER_PASSWORD": ""},
        {"SUBJECT_TEMPLATE": "Report for {server}"},
        {"SUBJECT_TEMPLATE": "Report {0}"},
        {"SUBJECT_TEMPLATE": "Report {date"},
        {"EVENT_SAMPLE_LIMIT": "0"},
        {"EVENT_SAMPLE_LIMIT": "-5"},
        {"LOG_LEVEL": "LOUD"},
    ],
)
def test_invalid_settings_raise(overrides):
    with pytest.raises(ConfigurationError):
        Settings.load(environ={**BASE_ENV, **overrides})


def test_subject_template_placeholders_accepted():
    s = Settings.load(environ={**BASE_ENV, "SUBJECT_TEMPLATE": "{count} snapshots on {source} ({date})"})
    assert s.email.subject_template == "{count} snapshots on {source} ({date})"


def test_log_level_case_insensitive():
    assert Settings.load(environ={**BASE_ENV, "LOG_LEVEL": "debug"}).log_level == "DEBUG"
    assert Settings.load(environ={**BASE_ENV, "LOG_LEVEL": "success"}).log_level == "SUCCESS"


def test_unreadable_yaml(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        Settings.load(bad, environ={})


def test_validate_requires_recipients_unless_test_mode():
    s = Settings.load(environ=BASE_ENV)
    s.validate(test_mode=True)
    with pytest.raises(ConfigurationError):
        s.validate()
    Settings.load(environ={**BASE_ENV, "MAIL_TO": "ops@x"}).validate()


def test_validate_requires_credentials():
    s = Settings.load(environ={"VCENTER_SERVER": "vc"})
    with pytest.raises(ConfigurationError):
        s.validate(test_mode=True)


def test_template_dir_override(tmp_path):
    s = Settings.load(environ={**BASE_ENV, "TEMPLATE_DIR": str(tmp_path)})
    assert s.template_dir == pathlib.Path(tmp_path)
