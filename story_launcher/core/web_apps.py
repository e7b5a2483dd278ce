# story_launcher/core/web_apps.py

"""
Remote web apps offered on the launcher. Opening one just hands its URL
to the system browser.
"""

from __future__ import annotations

import webbrowser
from dataclasses import dataclass
from typing import Callable, Tuple

from . import config
from .logger import log_action
from .models import UpdateResult


@dataclass(frozen=True)
class WebApp:
    id: str
    name: str
    description: str
    url: str


WEB_APPS: Tuple[WebApp, ...] = (
    WebApp(
        id="spellbook",
        name="Spellbook",
        description="Story production management platform",
        url=config.SPELLBOOK_URL,
    ),
    WebApp(
        id="portal",
        name="Story Portal",
        description="Team collaboration and resources hub",
        url=config.PORTAL_URL,
    ),
)


def open_web_app(app: WebApp, opener: Callable[[str], bool] = webbrowser.open) -> UpdateResult:
    try:
        opened = opener(app.url)
    except Exception as e:
        log_action(f"open_{app.id}", "ERROR", str(e))
        return UpdateResult(False, f"Failed to open: {e}")

    if not opened:
        log_action(f"open_{app.id}", "ERROR", "no browser available")
        return UpdateResult(False, "Failed to open: no browser available")

    log_action(f"open_{app.id}", "SUCCESS", app.url)
    return UpdateResult(True, f"Opened {app.name}")
