# firmsync/db/session.py
from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from firmsync.core.config import settings
from firmsync.db.models import Base  # важно, чтобы модели были импортированы

_LOCK = Lock()
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _ensure_sqlite_dir(db_url: str) -> None:
    # sqlite:///./data/data.db  → ./data
    if db_url.startswith("sqlite"):
        # Отбрасываем префикс sqlite:///
        prefix = "sqlite:///"
        if db_url.startswith(prefix):
            fs_path = db_url[len(prefix):]
            # :memory: — ничего не делаем
            if fs_path in ("", ":memory:"):
                return
            d = Path(fs_path).resolve().parent
            d.mkdir(parents=True, exist_ok=True)


def configure(db_url: Optional[str] = None, **engine_kwargs) -> Engine:
    """
    (Пере)создать engine и фабрику сессий.
    Без аргумента берём db.url из уже загруженного config.yaml.
    """
    global _engine, _SessionLocal
    url = db_url or settings.db_url
    _ensure_sqlite_dir(url)

    with _LOCK:
        if _engine is not None:
            _engine.dispose()
        _engine = create_engine(url, future=True, **engine_kwargs)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine, future=True)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        configure()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        configure()
    return _SessionLocal


def init_db() -> None:
    """Создать таблицы, если их ещё нет."""
    Base.metadata.create_all(bind=get_engine())
