"""Local key-value flags such as "has seen intro"."""

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from config import PREFERENCES_PATH, get_logger

logger = get_logger(__name__)


class InMemoryPreferences:
    def __init__(self, values: Optional[Dict[str, bool]] = None):
        self.values: Dict[str, bool] = dict(values or {})

    def get_bool(self, key: str, default: bool = False) -> bool:
        return bool(self.values.get(key, default))

    def set_bool(self, key: str, value: bool) -> None:
        self.values[key] = value


class JsonFilePreferences:
    """Boolean flags persisted to a small JSON file."""

    def __init__(self, path: str = PREFERENCES_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: Dict[str, bool] = self._load()

    def _load(self) -> Dict[str, bool]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read preferences from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed preferences file: {self.path}")
            return {}
        return {key: bool(value) for key, value in data.items()}

    def get_bool(self, key: str, default: bool = False) -> bool:
        with self._lock:
            return self._values.get(key, default)

    def set_bool(self, key: str, value: bool) -> None:
        with self._lock:
            self._values[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
        logger.debug(f"Preference {key} set to {value}")


# Global instance
_preferences = None


def get_preferences() -> JsonFilePreferences:
    """Get or create the global preferences store."""
    global _preferences
    if _preferences is None:
        _preferences = JsonFilePreferences()
    return _preferences
