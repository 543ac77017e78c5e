# 本地持久化的键值存储 (JSON 文件), 读写都是立即落盘
import json
import logging
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PREFERENCES_FILENAME = "preferences.json"


class Preferences:
    def __init__(self, data_dir: Path, filename: str = PREFERENCES_FILENAME):
        self.path = Path(data_dir) / filename
        self._lock = threading.Lock()
        self._values: dict = {}
        self.load()

    def load(self):
        with self._lock:
            if not self.path.exists():
                self._values = {}
                return
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error("Failed to load preferences from %s: %s", self.path, e)
                data = {}
            self._values = data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def get_str(self, key: str, default: str = "") -> str:
        value = self.get(key)
        return value if isinstance(value, str) else default

    def set(self, key: str, value: Any) -> bool:
        with self._lock:
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value
            return self._save()

    def remove(self, key: str) -> bool:
        return self.set(key, None)

    def _save(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2, ensure_ascii=False)
            tmp_path.replace(self.path)
            return True
        except OSError as e:
            logger.error("Failed to save preferences to %s: %s", self.path, e)
            return False

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._values)
