# firmsync/core/validate_cfg.py
from __future__ import annotations
from typing import Dict, Any, Optional

ALLOWED_TRANSPORT_TYPES = {"log", "http"}
ALLOWED_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _as_int(v, name, min_: Optional[int] = None, max_: Optional[int] = None) -> int:
    if isinstance(v, bool):
        raise ValueError(f"{name}: ожидается целое, получено {v!r}")
    try:
        iv = int(v)
    except Exception:
        raise ValueError(f"{name}: ожидается целое, получено {v!r}")
    if min_ is not None and iv < min_:
        raise ValueError(f"{name}: должно быть ≥ {min_} (получено {iv})")
    if max_ is not None and iv > max_:
        raise ValueError(f"{name}: должно быть ≤ {max_} (получено {iv})")
    return iv


def _as_float(v, name, min_: Optional[float] = None, strict: bool = False) -> float:
    if isinstance(v, bool):
        raise ValueError(f"{name}: ожидается число, получено {v!r}")
    try:
        fv = float(v)
    except Exception:
        raise ValueError(f"{name}: ожидается число, получено {v!r}")
    if min_ is not None:
        if strict and fv <= min_:
            raise ValueError(f"{name}: должно быть > {min_} (получено {fv})")
        if fv < min_:
            raise ValueError(f"{name}: должно быть ≥ {min_} (получено {fv})")
    return fv


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    sec = cfg.get(name) or {}
    if not isinstance(sec, dict):
        raise ValueError(f"{name}: должен быть объектом")
    return sec


def _validate_notify(conf: Any, name: str) -> None:
    if conf is None:
        return
    if not isinstance(conf, dict):
        raise ValueError(f"{name}: должен быть объектом")
    kind = str(conf.get("type", "log")).strip().lower()
    if kind not in ALLOWED_TRANSPORT_TYPES:
        raise ValueError(f"{name}.type: допустимо {sorted(ALLOWED_TRANSPORT_TYPES)}")
    if kind == "http":
        endpoint = str(conf.get("endpoint", "") or "").strip()
        if not endpoint:
            raise ValueError(f"{name}.endpoint: обязателен для type=http")
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"{name}.endpoint: ожидается http(s) URL, получено {endpoint!r}")
    if "timeout" in conf:
        _as_float(conf["timeout"], f"{name}.timeout", 0.0, strict=True)


def validate_cfg(cfg: Dict[str, Any]) -> None:
    """Бросает ValueError с понятным текстом, если конфиг некорректен."""
    if not isinstance(cfg, dict):
        raise ValueError("корневой YAML должен быть объектом")

    # ─── db ───
    db = _section(cfg, "db")
    if "url" in db:
        url = str(db.get("url") or "").strip()
        if not url:
            raise ValueError("db.url: не должен быть пустым (например sqlite:///./data/data.db)")

    # ─── automation ───
    auto = _section(cfg, "automation")
    if "rules_file" in auto and not isinstance(auto["rules_file"], str):
        raise ValueError("automation.rules_file: должен быть строкой")
    if "scheduler_poll_s" in auto:
        _as_float(auto["scheduler_poll_s"], "automation.scheduler_poll_s", 0.0, strict=True)
    if auto.get("call_timeout_s") is not None:
        _as_float(auto["call_timeout_s"], "automation.call_timeout_s", 0.0, strict=True)
    if "journal_size" in auto:
        _as_int(auto["journal_size"], "automation.journal_size", 1)
    if "default_task_due_hours" in auto:
        _as_float(auto["default_task_due_hours"], "automation.default_task_due_hours", 0.0)

    extra = auto.get("extra_trigger_types", [])
    if not isinstance(extra, list):
        raise ValueError("automation.extra_trigger_types: должен быть массивом")
    for i, t in enumerate(extra):
        if not isinstance(t, str) or not t.strip():
            raise ValueError(f"automation.extra_trigger_types[{i}]: ожидается непустая строка")

    # ─── transports ───
    tr = _section(cfg, "transports")
    _validate_notify(tr.get("email"), "transports.email")
    _validate_notify(tr.get("sms"), "transports.sms")
    wh = tr.get("webhook")
    if wh is not None:
        if not isinstance(wh, dict):
            raise ValueError("transports.webhook: должен быть объектом")
        if "timeout" in wh:
            _as_float(wh["timeout"], "transports.webhook.timeout", 0.0, strict=True)

    # ─── debug ───
    dbg = _section(cfg, "debug")
    if "log_level" in dbg:
        lvl = str(dbg["log_level"]).strip().upper()
        if lvl not in ALLOWED_LOG_LEVELS:
            raise ValueError(f"debug.log_level: допустимо {sorted(ALLOWED_LOG_LEVELS)}")
