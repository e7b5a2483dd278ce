# story_launcher/core/config.py

"""
Configuration for Story Launcher.

Everything the launcher needs to know about its environment lives here:
- Where its data directory is (settings, logs, staged updates, tool checkout).
- Which local tool it manages and where that tool's git remote lives.
- Which web apps are offered on the launcher.
- Where the self-update feed is published.

A few values can be overridden with environment variables, which is mostly
useful for development and tests:

    STORY_LAUNCHER_HOME      -> data directory (default: ~/.story-tools)
    STORY_LAUNCHER_TOOL_DIR  -> managed tool checkout directory
    STORY_LAUNCHER_FEED_URL  -> self-update feed URL
"""

from __future__ import annotations

import os
from pathlib import Path


# ---------------------------------------------------------------------------
# Application identity
# ---------------------------------------------------------------------------

APP_NAME = "Story Launcher"
APP_ID = "inc.story.launcher"


# ---------------------------------------------------------------------------
# Self-update feed
# ---------------------------------------------------------------------------

UPDATE_FEED_URL = "https://raw.githubusercontent.com/joyrider00/story-launcher/main/latest.json"

# Seconds to wait after startup before polling the feed, so the first
# status probe gets the network to itself.
SELF_UPDATE_DELAY_SECONDS = 3.0

HTTP_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 600
DOWNLOAD_CHUNK_SIZE = 65536


# ---------------------------------------------------------------------------
# Managed local tool
# ---------------------------------------------------------------------------

TOOL_ID = "resolve-sync"
TOOL_NAME = "Resolve Sync Script"
TOOL_REPO_URL = "https://github.com/joyrider00/spellbook-resolve-sync.git"
TOOL_REMOTE = "origin"
TOOL_BRANCH = "main"
TOOL_ENTRY_SCRIPT = "resolve_sync.py"


# ---------------------------------------------------------------------------
# Web apps
# ---------------------------------------------------------------------------

SPELLBOOK_URL = "https://spellbook.story.inc"
PORTAL_URL = "https://portal.story.inc"


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

SETTINGS_FILE_NAME = "settings.json"


def get_data_dir() -> Path:
    """
    Return the launcher's data directory (not created here).
    """
    override = os.environ.get("STORY_LAUNCHER_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".story-tools"


def get_settings_path() -> Path:
    return get_data_dir() / SETTINGS_FILE_NAME


def get_logs_dir() -> Path:
    return get_data_dir() / "logs"


def get_staging_dir() -> Path:
    return get_data_dir() / "updates"


def get_tool_dir() -> Path:
    """
    Return the checkout directory of the managed local tool.
    """
    override = os.environ.get("STORY_LAUNCHER_TOOL_DIR")
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "apps" / TOOL_ID


def get_feed_url() -> str:
    return os.environ.get("STORY_LAUNCHER_FEED_URL", UPDATE_FEED_URL)
