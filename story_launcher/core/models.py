# story_launcher/core/models.py

"""
Value types shared by the launcher core.

Everything here is an immutable snapshot. Components hand these out by
value; whoever owns a piece of state replaces the snapshot instead of
mutating it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Literal, Mapping, Optional

from .logger import get_logger

logger = get_logger("models")


# ---------------------------------------------------------------------------
# Errors raised by collaborators
# ---------------------------------------------------------------------------


class LauncherError(RuntimeError):
    """Base class for failures reported by launcher collaborators."""


class ToolError(LauncherError):
    """The managed local tool could not be queried, updated or launched."""


class SettingsError(LauncherError):
    """Settings could not be read from or written to disk."""


class AutostartError(LauncherError):
    """Launch-at-login registration could not be read or changed."""


class SelfUpdateError(LauncherError):
    """The release feed, the download or its verification failed."""


class RestartError(LauncherError):
    """The launcher could not be relaunched into a staged update."""


# ---------------------------------------------------------------------------
# Local tool
# ---------------------------------------------------------------------------

SHORT_COMMIT_LENGTH = 7


@dataclass(frozen=True)
class ToolStatus:
    """
    Installation / staleness facts about the managed local tool.

    has_update is derived, so it can never disagree with the other fields:
    it is only true for an installed tool whose local and remote commits
    are both known and differ.
    """

    installed: bool = False
    local_version: Optional[str] = None
    local_commit: Optional[str] = None
    remote_commit: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_update(self) -> bool:
        return bool(
            self.installed
            and self.local_commit
            and self.remote_commit
            and self.local_commit != self.remote_commit
        )

    @classmethod
    def failed(cls, error: str) -> "ToolStatus":
        """Status for a probe that could not resolve anything."""
        return cls(error=error)

    @staticmethod
    def short_commit(ref: Optional[str]) -> str:
        return ref[:SHORT_COMMIT_LENGTH] if ref else "—"


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of one update (or launch) attempt of the local tool."""

    success: bool
    message: str


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

# attribute name -> key used in settings.json
SETTING_KEYS: Dict[str, str] = {
    "auto_update_on_launch": "autoUpdateOnLaunch",
    "launch_at_login": "launchAtLogin",
}


@dataclass(frozen=True)
class Settings:
    auto_update_on_launch: bool = True
    launch_at_login: bool = False

    @classmethod
    def from_stored(cls, stored: Mapping[str, Any]) -> "Settings":
        """
        Build Settings from persisted values keyed by their on-disk names.
        Each missing (None) or non-boolean key falls back to its own default.
        """
        defaults = cls()
        values = {}
        for attr, key in SETTING_KEYS.items():
            value = stored.get(key)
            if isinstance(value, bool):
                values[attr] = value
                continue
            if value is not None:
                logger.warning("Ignoring setting %s=%r: expected true or false", key, value)
            values[attr] = getattr(defaults, attr)
        return cls(**values)

    def with_value(self, attr: str, value: bool) -> "Settings":
        if attr not in SETTING_KEYS:
            raise ValueError(f"Unknown setting: {attr!r}")
        return replace(self, **{attr: bool(value)})


# ---------------------------------------------------------------------------
# Self-update
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppUpdate:
    """Progress of the launcher's own pending update."""

    version: str
    downloading: bool = True
    downloaded_and_ready: bool = False
    progress: float = 0.0
    changelog: Optional[str] = None


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserMessage:
    kind: Literal["success", "error"]
    text: str

    @classmethod
    def success(cls, text: str) -> "UserMessage":
        return cls("success", text)

    @classmethod
    def error(cls, text: str) -> "UserMessage":
        return cls("error", text)
