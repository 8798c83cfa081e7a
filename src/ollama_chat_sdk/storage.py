"""
Small persistent key-value store backed by a single JSON file.
"""
import json
from pathlib import Path
from typing import Any

from ollama_chat_sdk.logger import logger

BASE_URL_KEY = "ollamaHost"
SELECTED_MODEL_KEY = "selectedModel"


class LocalStore:
    """Persist a flat mapping of JSON values across sessions."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error reading {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Ignoring {self.path}: expected a JSON object")
            return {}
        return data

    def _write(self, data: dict) -> None:
        """Write the mapping atomically via a temp file and rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        temp_path = self.path.with_suffix('.tmp')
        try:
            with open(temp_path, 'w') as f:
                json.dump(data, f, indent=2)
            temp_path.replace(self.path)
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
