"""Unit tests for YAML config loading and validation."""

import pytest

from firmsync.core.config import Settings
from firmsync.core.validate_cfg import validate_cfg
from firmsync.services.transports import (
    HttpNotifyTransport,
    LogNotifyTransport,
    RequestsWebhookTransport,
    build_transports,
)


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "missing.yaml"))
    s = Settings()
    s.load_yaml_config()

    assert s.cfg == {}
    assert s.db_url == "sqlite:///./data/data.db"
    assert s.rules_file == "data/rules.yaml"
    assert s.scheduler_poll_s == 5.0
    assert s.call_timeout_s == 30.0
    assert s.journal_size == 2000
    assert s.default_task_due_hours == 24.0
    assert s.extra_trigger_types == []
    assert s.log_level == "INFO"


def test_load_yaml_config(tmp_path, monkeypatch):
    p = tmp_path / "config.yaml"
    p.write_text(
        """
db:
  url: "sqlite:///./tmp/test.db"
automation:
  rules_file: "rules/seed.yaml"
  scheduler_poll_s: 0.5
  call_timeout_s: null
  journal_size: 50
  extra_trigger_types: ["invoice_paid"]
debug:
  log_level: debug
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_FILE", str(p))
    s = Settings()
    s.load_yaml_config()

    assert s.db_url == "sqlite:///./tmp/test.db"
    assert s.rules_file == "rules/seed.yaml"
    assert s.scheduler_poll_s == 0.5
    assert s.call_timeout_s is None
    assert s.journal_size == 50
    assert s.extra_trigger_types == ["invoice_paid"]
    assert s.log_level == "DEBUG"


def test_invalid_yaml_config_raises(tmp_path, monkeypatch):
    p = tmp_path / "config.yaml"
    p.write_text("automation:\n  journal_size: 0\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_FILE", str(p))

    with pytest.raises(ValueError, match="journal_size"):
        Settings().load_yaml_config()


@pytest.mark.parametrize(
    "cfg, needle",
    [
        ([], "корневой"),
        ({"db": {"url": ""}}, "db.url"),
        ({"automation": {"scheduler_poll_s": 0}}, "scheduler_poll_s"),
        ({"automation": {"call_timeout_s": -1}}, "call_timeout_s"),
        ({"automation": {"extra_trigger_types": "invoice_paid"}}, "extra_trigger_types"),
        ({"automation": {"extra_trigger_types": [""]}}, "extra_trigger_types"),
        ({"transports": {"email": {"type": "smtp"}}}, "transports.email.type"),
        ({"transports": {"sms": {"type": "http"}}}, "transports.sms.endpoint"),
        ({"transports": {"webhook": {"timeout": "fast"}}}, "transports.webhook.timeout"),
        ({"debug": {"log_level": "LOUD"}}, "debug.log_level"),
    ],
)
def test_validate_cfg_rejects(cfg, needle):
    with pytest.raises(ValueError, match=needle):
        validate_cfg(cfg)


def test_validate_cfg_accepts_full_config():
    validate_cfg(
        {
            "db": {"url": "postgresql+psycopg://u:p@db/firmsync"},
            "automation": {"call_timeout_s": 12.5, "default_task_due_hours": 48},
            "transports": {
                "email": {"type": "http", "endpoint": "https://relay.example/email", "api_key": "k", "timeout": 5},
                "sms": {"type": "log"},
                "webhook": {"timeout": 3},
            },
        }
    )


def test_build_transports_from_config():
    email, sms, webhook = build_transports(
        {
            "email": {"type": "http", "endpoint": "https://relay.example/email", "timeout": 3},
            "webhook": {"timeout": 7},
        }
    )
    assert isinstance(email, HttpNotifyTransport)
    assert email.timeout == 3.0
    assert isinstance(sms, LogNotifyTransport)
    assert isinstance(webhook, RequestsWebhookTransport)
    assert webhook.timeout == 7.0
