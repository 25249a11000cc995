from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import StorageError, ValidationError

LLM_URL_KEY = "llm_url"
MODEL_NAME_KEY = "model_name"
API_KEY_KEY = "llm_api_key"

logger = logging.getLogger("llamaterm.settings")


@dataclass(frozen=True)
class Setting:
    key: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value}


class SettingsStore:
    """
    Key/value settings persisted as a single JSON object.

    The file is stored as pretty-printed JSON so it can be edited by hand, and
    rewritten atomically on every upsert.
    """

    def __init__(self, root: Path) -> None:
        self.path = root / "settings.json"
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create settings directory {self.path.parent}") from exc

    def get(self, key: str) -> Optional[Setting]:
        with self._lock:
            values = self._load_from_disk()
        value = values.get(key)
        if value is None:
            return None
        return Setting(key=key, value=value)

    def upsert(self, key: str, value: str) -> Setting:
        if not isinstance(key, str) or not key:
            raise ValidationError("Setting key must be a non-empty string.", field="key")
        if not isinstance(value, str) or not value:
            raise ValidationError("Setting value must be a non-empty string.", field="value")
        with self._lock:
            values = self._load_from_disk()
            created = key not in values
            values[key] = value
            self._write(values)
        logger.info("%s setting %s", "Created" if created else "Updated", key)
        return Setting(key=key, value=value)

    def _load_from_disk(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Cannot read settings from {self.path}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Settings file {self.path} does not hold a JSON object")
        # Drop anything a manual edit left that is not a string.
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
                handle.write("\n")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Cannot write settings to {self.path}") from exc
