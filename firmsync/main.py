# firmsync/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from firmsync.core.config import settings
from firmsync.db.session import configure, init_db
from firmsync.automation.api.rules_api import router as automation_router
from firmsync.automation.runtime import ensure_automation_started, stop_automation

# ─────────────────────────────────────────────────────────────────────────────
# Приложение
# ─────────────────────────────────────────────────────────────────────────────
app = FastAPI(title="FirmSync")

app.include_router(automation_router)


# ─────────────────────────────────────────────────────────────────────────────
# Старт/стоп
# ─────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def _startup():
    # 1) грузим YAML
    settings.load_yaml_config()

    # 2) БД по db.url и таблицы
    configure(settings.db_url)
    init_db()

    # 3) движок автоматизации (+ сид правил из automation.rules_file)
    ensure_automation_started(cfg=settings)

    logging.getLogger("web").info("firmsync ready")


@app.on_event("shutdown")
def _shutdown():
    try:
        stop_automation()
    except Exception as e:
        logging.getLogger("web").error("automation stop failed: %s", e)


@app.get("/health")
def health():
    return {"ok": True}

