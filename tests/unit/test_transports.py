"""Unit tests for email/SMS/webhook transports (requests mocked)."""

import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from firmsync.services.transports import HttpNotifyTransport, LogNotifyTransport, RequestsWebhookTransport


def _response(status_code, text=""):
    r = Mock()
    r.status_code = status_code
    r.text = text
    return r


def test_http_notify_posts_to_relay():
    t = HttpNotifyTransport("email", "https://relay.example/email", api_key="k", timeout=4)

    with patch("firmsync.services.transports.requests.post", return_value=_response(202)) as post:
        t.send("firm-a", "intake@firm.com", {"subject": "New Client"})

    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "https://relay.example/email"
    assert kwargs["json"] == {"channel": "email", "to": "intake@firm.com", "payload": {"subject": "New Client"}}
    assert kwargs["headers"] == {"X-Tenant-ID": "firm-a", "Authorization": "Bearer k"}
    assert kwargs["timeout"] == 4


def test_http_notify_raises_on_error_status():
    t = HttpNotifyTransport("sms", "https://relay.example/sms")

    with patch("firmsync.services.transports.requests.post", return_value=_response(500, "boom")):
        with pytest.raises(requests.HTTPError):
            t.send("firm-a", "+15550100", {})


def test_webhook_posts_json_and_returns_status():
    t = RequestsWebhookTransport(timeout=2)
    headers = {"Content-Type": "application/json", "X-Tenant-ID": "firm-a"}

    with patch("firmsync.services.transports.requests.post", return_value=_response(204)) as post:
        code = t.post("https://hooks.example/x", {"a": 1, "when": datetime(2024, 1, 1, tzinfo=timezone.utc)}, headers)

    assert code == 204
    _, kwargs = post.call_args
    body = json.loads(kwargs["data"].decode("utf-8"))
    assert body["a"] == 1
    assert body["when"] == "2024-01-01 00:00:00+00:00"
    assert kwargs["headers"] == headers
    assert kwargs["timeout"] == 2


def test_log_notify_only_logs(caplog):
    t = LogNotifyTransport("email")
    with caplog.at_level("INFO", logger="automation.transport"):
        t.send("firm-a", "intake@firm.com", {"subject": "Hi"})
    assert "intake@firm.com" in caplog.text
