# story_launcher/core/settings_store.py

"""
User preferences for Story Launcher.

Two layers:

1) JsonSettingsStore
   Key-value persistence over a small JSON file (settings.json in the data
   directory). get/set work on an in-memory copy; flush() writes it out.

2) SettingsAdapter
   What the rest of the launcher talks to. Loads Settings once at startup
   (missing keys fall back to their defaults), makes the OS launch-at-login
   registration match the persisted preference, and writes each toggle
   back immediately.

Toggles are optimistic: the in-memory Settings change first and stay
changed even if writing settings.json or touching the OS registration
fails afterwards. The failure is logged, nothing is rolled back.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .config import get_settings_path
from .logger import get_logger
from .models import SETTING_KEYS, Settings, SettingsError

logger = get_logger("settings")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class JsonSettingsStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_settings_path()
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data

        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable settings file %s: %s", self.path, e)
            else:
                if isinstance(raw, dict):
                    data = raw
                else:
                    logger.warning("Ignoring settings file %s: not a JSON object", self.path)

        self._data = data
        return data

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        self._load()[key] = value

    def flush(self) -> None:
        data = self._load()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as e:
            raise SettingsError(f"Failed to write {self.path}: {e}") from e


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class SettingsPersistence(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def flush(self) -> None: ...


class AutostartRegistration(Protocol):
    def is_enabled(self) -> bool: ...

    def enable(self) -> None: ...

    def disable(self) -> None: ...


class SettingsAdapter:
    def __init__(self, store: SettingsPersistence, autostart: AutostartRegistration) -> None:
        self._store = store
        self._autostart = autostart
        self._settings = Settings()

    @property
    def settings(self) -> Settings:
        return self._settings

    async def load(self) -> Settings:
        """
        Read persisted preferences over the defaults and reconcile
        launch-at-login with the OS. Never raises.
        """
        stored: Dict[str, Optional[Any]] = {}
        try:
            for key in SETTING_KEYS.values():
                stored[key] = self._store.get(key)
        except Exception as e:
            logger.error("Failed to load settings: %s", e)

        self._settings = Settings.from_stored(stored)
        logger.info(
            "Settings loaded: auto_update_on_launch=%s launch_at_login=%s",
            self._settings.auto_update_on_launch,
            self._settings.launch_at_login,
        )

        if isinstance(stored.get(SETTING_KEYS["launch_at_login"]), bool):
            self._reconcile_autostart(self._settings.launch_at_login)

        return self._settings

    def _reconcile_autostart(self, wanted: bool) -> None:
        try:
            if self._autostart.is_enabled() == wanted:
                return
            logger.info("Launch-at-login registration out of sync, setting it to %s", wanted)
            self._apply_autostart(wanted)
        except Exception as e:
            logger.error("Failed to reconcile launch at login: %s", e)

    def _apply_autostart(self, enabled: bool) -> None:
        if enabled:
            self._autostart.enable()
        else:
            self._autostart.disable()

    async def set(self, attr: str, value: bool) -> Settings:
        """
        Apply one toggle. Raises ValueError for an unknown setting name;
        persistence and registration failures are only logged.
        """
        self._settings = self._settings.with_value(attr, value)
        key = SETTING_KEYS[attr]

        try:
            self._store.set(key, bool(value))
            self._store.flush()
        except Exception as e:
            logger.error("Failed to save setting %s: %s", key, e)

        if attr == "launch_at_login":
            try:
                self._apply_autostart(bool(value))
            except Exception as e:
                logger.error("Failed to change launch at login: %s", e)

        return self._settings
