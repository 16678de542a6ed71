"""Persisted user settings: default provider, trust records and provider values."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class SettingsDocument(BaseModel):
    default_provider: str = ""
    trusted_providers: dict[str, bool] = Field(default_factory=dict)
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)


class SettingsStore:
    """JSON file backed settings shared by the provider registry and providers.

    Writes are last-write-wins; every mutation is saved immediately.
    """

    def __init__(self, path: str | Path | None, *, autosave: bool = True) -> None:
        self.path = Path(path).expanduser() if path else None
        self.autosave = autosave
        self._lock = threading.RLock()
        self._doc = SettingsDocument()
        self.load()

    def load(self) -> None:
        with self._lock:
            if self.path is None or not self.path.exists():
                self._doc = SettingsDocument()
                return
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                self._doc = SettingsDocument.model_validate(raw)
            except (OSError, json.JSONDecodeError, ValidationError):
                logger.warning(
                    "Settings file %s unreadable, starting empty", self.path, exc_info=True
                )
                self._doc = SettingsDocument()

    def save(self) -> None:
        with self._lock:
            if self.path is None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = self._doc.model_dump_json(indent=2)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def _changed(self) -> None:
        if self.autosave:
            self.save()

    @property
    def default_provider(self) -> str:
        with self._lock:
            return self._doc.default_provider

    @default_provider.setter
    def default_provider(self, name: str) -> None:
        with self._lock:
            self._doc.default_provider = name
            self._changed()

    def is_trusted(self, name: str) -> bool | None:
        """Return the stored decision, or ``None`` when the provider was never seen."""
        with self._lock:
            return self._doc.trusted_providers.get(name)

    def set_trusted(self, name: str, allowed: bool) -> None:
        with self._lock:
            self._doc.trusted_providers[name] = bool(allowed)
            self._changed()

    def trusted_providers(self) -> dict[str, bool]:
        with self._lock:
            return dict(self._doc.trusted_providers)

    def get_provider_settings(self, provider: str) -> dict[str, Any]:
        with self._lock:
            return dict(self._doc.providers.get(provider, {}))

    def get_setting(self, provider: str, key: str) -> Any:
        with self._lock:
            return self._doc.providers.get(provider, {}).get(key)

    def set_setting(self, provider: str, key: str, value: Any) -> None:
        with self._lock:
            self._doc.providers.setdefault(provider, {})[key] = value
            self._changed()

    def remove_setting(self, provider: str, key: str) -> None:
        with self._lock:
            values = self._doc.providers.get(provider)
            if values is not None and key in values:
                del values[key]
                self._changed()

    def replace_provider_settings(self, provider: str, values: dict[str, Any]) -> None:
        with self._lock:
            self._doc.providers[provider] = dict(values)
            self._changed()
