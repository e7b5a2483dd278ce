# story_launcher/core/startup.py

"""
Launch-at-login helpers for Story Launcher.

The launcher registers itself to start minimized to the tray when the user
logs in. Registration is platform specific:

    Windows  HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Run value
    macOS    ~/Library/LaunchAgents/<APP_ID>.plist
    Linux    ~/.config/autostart/<APP_ID>.desktop (XDG autostart)

Autostart wraps these behind is_enabled() / enable() / disable(), raising
AutostartError when the registration cannot be read or changed.
"""

from __future__ import annotations

import os
import plistlib
import sys
from pathlib import Path
from typing import List, Optional

from .config import APP_ID, APP_NAME
from .logger import get_logger
from .models import AutostartError

logger = get_logger("startup")

if os.name == "nt":
    import winreg  # type: ignore[import-not-found]
else:
    winreg = None  # type: ignore[assignment]

RUN_KEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
VALUE_NAME = "Story_Launcher"
MODULE = "story_launcher.main"


def _get_launch_args() -> List[str]:
    """
    Builds the command that starts the launcher minimized.

    Prefers pythonw.exe on Windows so no console window appears.
    """
    exe = sys.executable
    if exe.lower().endswith("python.exe"):
        pythonw = exe[:-10] + "pythonw.exe"  # strip "python.exe"
        if os.path.exists(pythonw):
            exe = pythonw
    return [exe, "-m", MODULE, "--minimized"]


def _get_launch_command() -> str:
    exe, *rest = _get_launch_args()
    return " ".join([f'"{exe}"', *rest])


# ---------------------------------------------------------------------------
# Windows: Run registry key
# ---------------------------------------------------------------------------


def _win_is_enabled() -> bool:
    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_READ) as key:  # type: ignore[union-attr]
            value, _ = winreg.QueryValueEx(key, VALUE_NAME)  # type: ignore[union-attr]
    except FileNotFoundError:
        return False
    except OSError as e:
        raise AutostartError(f"Failed to read Run key: {e}") from e

    # Heuristic: our command should contain the module name.
    return isinstance(value, str) and MODULE in value


def _win_enable() -> None:
    cmd = _get_launch_command()
    try:
        with winreg.CreateKey(winreg.HKEY_CURRENT_USER, RUN_KEY) as key:  # type: ignore[union-attr]
            winreg.SetValueEx(key, VALUE_NAME, 0, winreg.REG_SZ, cmd)  # type: ignore[union-attr]
    except OSError as e:
        raise AutostartError(f"Failed to set Run key value '{VALUE_NAME}': {e}") from e


def _win_disable() -> None:
    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, RUN_KEY, 0, winreg.KEY_SET_VALUE) as key:  # type: ignore[union-attr]
            winreg.DeleteValue(key, VALUE_NAME)  # type: ignore[union-attr]
    except FileNotFoundError:
        # Already not present
        return
    except OSError as e:
        raise AutostartError(f"Failed to delete Run key value '{VALUE_NAME}': {e}") from e


# ---------------------------------------------------------------------------
# macOS / Linux: file based registration
# ---------------------------------------------------------------------------


def get_launch_agent_path(home: Optional[Path] = None) -> Path:
    return (home or Path.home()) / "Library" / "LaunchAgents" / f"{APP_ID}.plist"


def get_desktop_entry_path(home: Optional[Path] = None) -> Path:
    if home is not None:
        base = home / ".config"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    return base / "autostart" / f"{APP_ID}.desktop"


def _launch_agent_bytes() -> bytes:
    return plistlib.dumps(
        {
            "Label": APP_ID,
            "ProgramArguments": _get_launch_args(),
            "RunAtLoad": True,
        }
    )


def _desktop_entry_text() -> str:
    return "\n".join(
        [
            "[Desktop Entry]",
            "Type=Application",
            f"Name={APP_NAME}",
            f"Exec={_get_launch_command()}",
            "X-GNOME-Autostart-enabled=true",
            "",
        ]
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class Autostart:
    """
    Launch-at-login registration for the current platform.
    """

    def __init__(self, platform: Optional[str] = None, home: Optional[Path] = None) -> None:
        self.platform = platform or sys.platform
        self._home = home

    def is_supported(self) -> bool:
        if self.platform.startswith("win"):
            return winreg is not None
        return True

    def _entry_path(self) -> Path:
        if self.platform == "darwin":
            return get_launch_agent_path(self._home)
        return get_desktop_entry_path(self._home)

    def is_enabled(self) -> bool:
        if not self.is_supported():
            return False
        if self.platform.startswith("win"):
            return _win_is_enabled()
        return self._entry_path().exists()

    def enable(self) -> None:
        if not self.is_supported():
            raise AutostartError("Launch at login is not supported on this platform.")

        logger.info("Enabling launch at login: %s", _get_launch_command())
        if self.platform.startswith("win"):
            _win_enable()
            return

        path = self._entry_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if self.platform == "darwin":
                path.write_bytes(_launch_agent_bytes())
            else:
                path.write_text(_desktop_entry_text(), encoding="utf-8")
        except OSError as e:
            raise AutostartError(f"Failed to write {path}: {e}") from e

    def disable(self) -> None:
        if not self.is_supported():
            raise AutostartError("Launch at login is not supported on this platform.")

        logger.info("Disabling launch at login.")
        if self.platform.startswith("win"):
            _win_disable()
            return

        path = self._entry_path()
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise AutostartError(f"Failed to remove {path}: {e}") from e
