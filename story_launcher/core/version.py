# story_launcher/core/version.py

"""
Version information for Story Launcher.

The self-updater compares the release feed against get_version(), so
bump __version__ whenever you ship a build.
"""

from __future__ import annotations


__version__ = "0.1.0"


def get_version() -> str:
    """
    Returns the current application version string.
    """
    return __version__
