# heartsense/cooldown.py
import json
import logging
import os
import threading
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)

KEY_PREFIX = "elevated_hr_last_notified_"


def cooldown_key(user_id: int) -> str:
    return f"{KEY_PREFIX}{user_id}"


class CooldownStore:
    """Last-notified timestamps for the elevated heart rate alert.

    Kept apart from the alert table: it is a local key/value store, optionally
    mirrored to a JSON file so a restart does not reopen the cooldown window.
    """

    def __init__(self, path: Optional[str] = None):
        self._lock = threading.Lock()
        self._path = path
        self._values: Dict[str, str] = {}
        if path:
            self._load()

    def _load(self):
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning("cooldown store %s unreadable, starting empty: %s", self._path, e)
            return
        if isinstance(raw, dict):
            self._values = {str(k): str(v) for k, v in raw.items()}

    def _save(self):
        if not self._path:
            return
        tmp = f"{self._path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(self._values, fh)
            os.replace(tmp, self._path)
        except OSError as e:
            logger.warning("cooldown store %s not written: %s", self._path, e)

    def get(self, user_id: int) -> Optional[datetime]:
        with self._lock:
            raw = self._values.get(cooldown_key(user_id))
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def set(self, user_id: int, when: datetime):
        with self._lock:
            self._values[cooldown_key(user_id)] = when.isoformat()
            self._save()

    def clear(self, user_id: Optional[int] = None):
        with self._lock:
            if user_id is None:
                self._values.clear()
            else:
                self._values.pop(cooldown_key(user_id), None)
            self._save()


_store: Optional[CooldownStore] = None


def get_cooldown_store() -> CooldownStore:
    global _store
    if _store is None:
        from heartsense.settings.config import settings
        _store = CooldownStore(settings.COOLDOWN_STORE_PATH)
    return _store
