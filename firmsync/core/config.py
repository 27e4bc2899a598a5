# firmsync/core/config.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings

from firmsync.core.validate_cfg import validate_cfg


class Settings(BaseSettings):
    # путь к основному YAML (можно переопределить переменной окружения CONFIG_FILE)
    config_file: str = Field(default="config.yaml", validation_alias="CONFIG_FILE")

    # внутреннее хранилище загруженного YAML
    _cfg: Dict[str, Any] = PrivateAttr(default_factory=dict)
    _config_path: Path | None = PrivateAttr(default=None)

    # ───────── пути ─────────
    @property
    def config_path(self) -> Path:
        if self._config_path is None:
            p = Path(self.config_file)
            if not p.is_absolute():
                p = Path.cwd() / p
            self._config_path = p
        return self._config_path

    # ───────── YAML cfg ─────────
    @property
    def cfg(self) -> Dict[str, Any]:
        return self._cfg

    def set_cfg(self, data: Dict[str, Any]) -> None:
        data = data or {}
        validate_cfg(data)
        self._cfg = data

    def load_yaml_config(self) -> None:
        p = self.config_path
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                self._cfg = yaml.safe_load(f) or {}
                validate_cfg(self._cfg)  # выбросит ValueError, если что-то не так
        else:
            self._cfg = {}

    # ───────── удобные секции ─────────
    @property
    def automation(self) -> Dict[str, Any]:
        return self._cfg.get("automation") or {}

    @property
    def transports(self) -> Dict[str, Any]:
        return self._cfg.get("transports") or {}

    @property
    def debug(self) -> Dict[str, Any]:
        return self._cfg.get("debug") or {}

    @property
    def db_url(self) -> str:
        return (self._cfg.get("db") or {}).get("url", "sqlite:///./data/data.db")

    # ───────── automation с дефолтами ─────────
    @property
    def rules_file(self) -> str:
        return str(self.automation.get("rules_file", "data/rules.yaml"))

    @property
    def scheduler_poll_s(self) -> float:
        return float(self.automation.get("scheduler_poll_s", 5))

    @property
    def call_timeout_s(self) -> Optional[float]:
        # явный null в YAML = без ограничения
        if "call_timeout_s" in self.automation and self.automation["call_timeout_s"] is None:
            return None
        return float(self.automation.get("call_timeout_s", 30))

    @property
    def journal_size(self) -> int:
        return int(self.automation.get("journal_size", 2000))

    @property
    def default_task_due_hours(self) -> float:
        return float(self.automation.get("default_task_due_hours", 24))

    @property
    def extra_trigger_types(self) -> List[str]:
        return [str(t).strip() for t in (self.automation.get("extra_trigger_types") or [])]

    @property
    def log_level(self) -> str:
        return str(self.debug.get("log_level", "INFO")).upper()


settings = Settings()
