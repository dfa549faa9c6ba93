"""Runtime settings backed by the `settings` table with a TTL cache.

Values stored in the database win over environment configuration, so
operators can rotate WhatsApp credentials or change the assistant prompt
without a redeploy.
"""

import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from inbox.config import Settings, settings
from inbox.database import SessionLocal
from inbox.logging_config import get_logger
from inbox.models import Setting

logger = get_logger("settings_service")

SETTING_TYPES = ("string", "boolean", "integer", "json")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_MISSING = object()


def cast_value(raw: Optional[str], value_type: str) -> Any:
    if raw is None:
        return None
    if value_type == "boolean":
        return str(raw).strip().lower() in _TRUE_VALUES
    if value_type == "integer":
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0
    if value_type == "json":
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid JSON setting value", extra={"context": {"raw": str(raw)[:100]}})
            return None
    return raw


def serialize_value(value: Any, value_type: str) -> Optional[str]:
    if value is None:
        return None
    if value_type == "boolean":
        return "true" if value in (True, "true", "1", 1, "yes", "on") else "false"
    if value_type == "json" or isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class SettingsStore:
    """Typed key/value settings with a per-key TTL cache and env fallback."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ttl_seconds: Optional[float] = None,
        env: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._ttl = settings.settings_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._env = env or settings
        self._cache: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def _load(self, key: str) -> Any:
        db = self._session_factory()
        try:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is None:
                return _MISSING
            return cast_value(row.value, row.type)
        finally:
            db.close()

    def get(self, key: str, default: Any = None) -> Any:
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None and cached[0] > now:
            value = cached[1]
        else:
            value = self._load(key)
            with self._lock:
                self._cache[key] = (now + self._ttl, value)

        if value is _MISSING or value is None or value == "":
            env_value = getattr(self._env, key, None)
            if env_value not in (None, ""):
                return env_value
            return default
        return value

    def set(
        self,
        key: str,
        value: Any,
        value_type: Optional[str] = None,
        group: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Setting:
        if value_type is not None and value_type not in SETTING_TYPES:
            raise ValueError(f"Unknown setting type: {value_type}")

        db = self._session_factory()
        try:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is None:
                row = Setting(key=key, type=value_type or "string", group=group or "general")
                db.add(row)
            else:
                if value_type:
                    row.type = value_type
                if group:
                    row.group = group
            if description is not None:
                row.description = description
            row.value = serialize_value(value, row.type)
            row.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(row)
            db.expunge(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self.invalidate(key)
        logger.info("Setting updated", extra={"context": {"key": key, "group": row.group}})
        return row

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    def get_group(self, group: str) -> dict[str, Any]:
        db = self._session_factory()
        try:
            rows = db.query(Setting).filter(Setting.group == group).order_by(Setting.key).all()
            return {row.key: cast_value(row.value, row.type) for row in rows}
        finally:
            db.close()


_store: Optional[SettingsStore] = None


def get_settings_store() -> SettingsStore:
    global _store
    if _store is None:
        _store = SettingsStore()
    return _store
