# story_launcher/main.py

"""
Entry point for Story Launcher.

Run with:
    python -m story_launcher.main
    (the launch-at-login registration adds --minimized)

Wires the launcher core together and runs it:
- The core (settings, tool status, auto-update, self-update) runs on an
  asyncio event loop in a background thread.
- The tray icon owns the main thread, which macOS requires.
"""

from __future__ import annotations

import argparse
import asyncio
import threading
from dataclasses import dataclass
from typing import List, Optional

from .core.controller import ReconciliationController
from .core.events import EventBus
from .core.local_tool import GitTool
from .core.logger import get_logger
from .core.self_updater import (
    FeedReleaseChannel,
    Relauncher,
    SelfUpdateOrchestrator,
    StagingArea,
)
from .core.settings_store import JsonSettingsStore, SettingsAdapter
from .core.startup import Autostart
from .core.version import get_version
from .tray_agent import TrayAgent

logger = get_logger("main")


@dataclass
class Launcher:
    loop: asyncio.AbstractEventLoop
    bus: EventBus
    tray: TrayAgent
    controller: ReconciliationController
    updater: SelfUpdateOrchestrator


def build_launcher(loop: asyncio.AbstractEventLoop) -> Launcher:
    bus = EventBus(loop)
    tray = TrayAgent(bus)

    settings = SettingsAdapter(JsonSettingsStore(), Autostart())
    controller = ReconciliationController(
        GitTool(),
        settings,
        set_update_indicator=tray.set_update_indicator,
    )
    controller.subscribe(bus)

    staging = StagingArea()
    updater = SelfUpdateOrchestrator(
        FeedReleaseChannel(staging=staging),
        Relauncher(staging, shutdown=tray.stop),
    )

    tray.attach(loop, controller, updater)
    return Launcher(loop, bus, tray, controller, updater)


async def start_core(launcher: Launcher) -> None:
    """
    Start the self-update cycle and the controller's startup sequence.
    The two run independently; neither waits for the other.
    """
    launcher.updater.start()
    await launcher.controller.start()


def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    loop.run_forever()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="story-launcher", description="Story Launcher tray app")
    parser.add_argument(
        "--minimized",
        action="store_true",
        help="started at login; stay quietly in the tray",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logger.info("Starting Story Launcher (v%s)%s", get_version(), " minimized" if args.minimized else "")

    loop = asyncio.new_event_loop()
    core_thread = threading.Thread(target=_run_loop, args=(loop,), name="launcher-core", daemon=True)
    core_thread.start()

    launcher = build_launcher(loop)

    def setup(icon) -> None:
        icon.visible = True
        future = asyncio.run_coroutine_threadsafe(start_core(launcher), loop)
        future.add_done_callback(_log_startup_failure)

    try:
        # Run the tray icon event loop (blocking)
        launcher.tray.run(setup=setup)
    finally:
        logger.info("Story Launcher shutting down")
        loop.call_soon_threadsafe(loop.stop)
        core_thread.join(timeout=5)


def _log_startup_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Launcher startup failed: %s", exc)


if __name__ == "__main__":
    main()
