# firmsync/services/transports.py
"""
Транспорты для действий движка: email, SMS, webhook.

Движок про конкретных провайдеров ничего не знает — он зовёт
send()/post() у объектов отсюда. Повторные попытки (если нужны)
— забота транспорта, движок сам ничего не ретраит.

Конфиг (секция transports в config.yaml):

transports:
  email:
    type: "http"                       # "log" | "http"
    endpoint: "https://relay.example/api/email"
    api_key: "secret"
    timeout: 10
  sms:
    type: "log"
  webhook:
    timeout: 10
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import requests


class NotifyTransport:
    """Email/SMS: отправить payload на target от имени тенанта."""

    def send(self, tenant_id: str, target: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class WebhookTransport:
    """POST JSON на url; возвращает HTTP-код ответа."""

    def post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> int:
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────────────
# Реализации
# ─────────────────────────────────────────────────────────────────────────────

class LogNotifyTransport(NotifyTransport):
    """Ничего не отправляет, только пишет в лог (режим по умолчанию)."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        self.log = logging.getLogger("automation.transport")

    def send(self, tenant_id: str, target: str, payload: Dict[str, Any]) -> None:
        self.log.info(
            "%s to %s (tenant=%s): %s",
            self.channel,
            target,
            tenant_id,
            json.dumps(payload, ensure_ascii=False, default=str),
        )


class HttpNotifyTransport(NotifyTransport):
    """
    Отправка через HTTP-релей провайдера (SendGrid/Twilio и т.п. за своим API).
    Ошибка HTTP → исключение, движок зафиксирует действие как FAILED.
    """

    def __init__(self, channel: str, endpoint: str, api_key: str = "", timeout: float = 10) -> None:
        self.channel = channel
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.log = logging.getLogger("automation.transport")

    def send(self, tenant_id: str, target: str, payload: Dict[str, Any]) -> None:
        headers = {"X-Tenant-ID": tenant_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        r = requests.post(
            self.endpoint,
            json={"channel": self.channel, "to": target, "payload": payload},
            headers=headers,
            timeout=self.timeout,
        )
        if not 200 <= r.status_code < 300:
            self.log.error("%s relay HTTP %s: %s", self.channel, r.status_code, r.text[:500])
            raise requests.HTTPError(f"{self.channel} relay returned {r.status_code}", response=r)


class RequestsWebhookTransport(WebhookTransport):
    def __init__(self, timeout: float = 10) -> None:
        self.timeout = timeout

    def post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> int:
        # json.dumps с default=str — в контексте бывают datetime
        r = requests.post(
            url,
            data=json.dumps(body, ensure_ascii=False, default=str).encode("utf-8"),
            headers=headers,
            timeout=self.timeout,
        )
        return r.status_code


# ─────────────────────────────────────────────────────────────────────────────
# Фабрика из конфига
# ─────────────────────────────────────────────────────────────────────────────

def _build_notify(channel: str, conf: Optional[Dict[str, Any]]) -> NotifyTransport:
    conf = conf or {}
    kind = str(conf.get("type", "log")).lower()
    if kind == "http":
        return HttpNotifyTransport(
            channel,
            endpoint=str(conf["endpoint"]),
            api_key=str(conf.get("api_key", "") or ""),
            timeout=float(conf.get("timeout", 10)),
        )
    return LogNotifyTransport(channel)


def build_transports(cfg: Optional[Dict[str, Any]]) -> Tuple[NotifyTransport, NotifyTransport, WebhookTransport]:
    """(email, sms, webhook) по секции transports."""
    cfg = cfg or {}
    email = _build_notify("email", cfg.get("email"))
    sms = _build_notify("sms", cfg.get("sms"))
    webhook = RequestsWebhookTransport(timeout=float((cfg.get("webhook") or {}).get("timeout", 10)))
    return email, sms, webhook
