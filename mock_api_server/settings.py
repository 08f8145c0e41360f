"""YAML backed user and server settings."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import structlog
import yaml

from .models import ServerSettings, UserMockSetting, UserSettings

LOGGER = structlog.get_logger("mock_api_server")


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def load_server_settings(path: Path) -> ServerSettings:
    """Load ``server.yml``; missing keys keep their defaults."""

    if not path.exists():
        settings = ServerSettings()
    else:
        settings = ServerSettings.model_validate(_read_yaml_mapping(path))
    LOGGER.info("server_settings_loaded", path=str(path), **settings.as_serializable())
    return settings


def mock_setting_key(url_path: str, method: str) -> str:
    return f"{url_path}/@{method}".lower()


class UserSettingsStore:
    """Per-route overrides persisted to a YAML file.

    Keys are ``<url path>/@<method>`` lower-cased, so lookups ignore case in
    both path and method. Every save rewrites the whole file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._settings = UserSettings()
        self._lock = threading.Lock()

    def load(self) -> None:
        if self.path.exists():
            payload = _read_yaml_mapping(self.path)
            api = payload.get("api") or {}
            # "/mock/x/@get:" with nothing under it means default settings
            payload["api"] = {str(key).lower(): value if value is not None else {} for key, value in api.items()}
            self._settings = UserSettings.model_validate(payload)
        LOGGER.info("user_settings_loaded", path=str(self.path), overrides=len(self._settings.api))

    def get_mock_setting(self, url_path: str, method: str) -> UserMockSetting:
        key = mock_setting_key(url_path, method)
        with self._lock:
            setting = self._settings.api.get(key)
            if setting is None:
                return UserMockSetting()
            return setting.model_copy(deep=True)

    def save_mock_setting(self, url_path: str, method: str, setting: UserMockSetting) -> None:
        key = mock_setting_key(url_path, method)
        with self._lock:
            self._settings.api[key] = setting.model_copy(deep=True)
            payload = self._settings.model_dump(mode="json")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        LOGGER.info("user_setting_saved", path=str(self.path), key=key, parser=setting.parser)

    def as_serializable(self) -> dict[str, Any]:
        with self._lock:
            return self._settings.model_dump(mode="json")
