# story_launcher/tray_agent.py

"""
System tray agent for Story Launcher.

Features:
- Tray icon in the menu bar / notification area. A badge is drawn on the
  icon while the managed local tool has an update pending.
- Tray menu:
    * Open the managed local tool (when installed) / update it
    * Open each web app
    * Check for Updates
    * Restart into a downloaded launcher update / dismiss it
    * Auto-update on launch and Launch at login toggles
    * Quit
- User-visible messages (failed update, failed launch, ...) are shown as
  tray notifications.

The tray runs on the main thread; the launcher core runs on its own event
loop. Menu callbacks hand work over to that loop and never touch core
state themselves. The core pushes snapshots back through listeners.

Requires:
    pip install pystray pillow
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Optional

import pystray
from pystray import Menu, MenuItem as Item
from PIL import Image, ImageDraw

from .core import config
from .core.controller import ControllerSnapshot, ReconciliationController
from .core.events import CHECK_UPDATES, EventBus
from .core.logger import get_logger
from .core.models import AppUpdate, ToolStatus, UserMessage
from .core.self_updater import SelfUpdateOrchestrator, SelfUpdateSnapshot, UpdatePhase
from .core.version import get_version
from .core.web_apps import WEB_APPS, WebApp

logger = get_logger("tray_agent")


# ---------------------------------------------------------------------------
# Icon
# ---------------------------------------------------------------------------

ICON_SIZE = 64
BADGE_COLOR = (239, 68, 68, 255)


def create_icon_image(has_update: bool = False) -> "Image.Image":
    """
    Create the tray icon image (in-memory). The update variant carries a
    red badge in the top-right corner.
    """
    size = ICON_SIZE
    image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)

    # Rounded square, purple-blue
    draw.rounded_rectangle((4, 4, size - 4, size - 4), radius=14, fill=(99, 91, 255, 255))

    # Stylised "S" as two stacked bars
    draw.rectangle((size * 0.3, size * 0.28, size * 0.7, size * 0.4), fill=(255, 255, 255, 255))
    draw.rectangle((size * 0.3, size * 0.6, size * 0.7, size * 0.72), fill=(255, 255, 255, 255))

    if has_update:
        r = size * 0.18
        cx, cy = size - r - 2, r + 2
        draw.ellipse((cx - r, cy - r, cx + r, cy + r), fill=BADGE_COLOR)

    return image


def describe_status(snapshot: Optional[ControllerSnapshot]) -> str:
    """One-line status text for the (disabled) status menu entry."""
    if snapshot is None or not snapshot.settings_loaded:
        return "Starting..."
    if snapshot.is_updating:
        return f"{config.TOOL_NAME}: updating..."
    if snapshot.is_loading:
        return f"{config.TOOL_NAME}: checking for updates..."
    status = snapshot.status
    if status is None or not status.installed:
        return f"{config.TOOL_NAME}: not installed"
    commit = ToolStatus.short_commit(status.local_commit)
    if status.has_update:
        return f"{config.TOOL_NAME}: {commit} (update available)"
    return f"{config.TOOL_NAME}: {commit} (up to date)"


def describe_ready_update(update: Optional[AppUpdate]) -> str:
    if update is None:
        return "A new version has been downloaded"
    text = f"Version {update.version} has been downloaded"
    if update.changelog:
        text += f"\n{update.changelog}"
    return text


# ---------------------------------------------------------------------------
# Tray agent
# ---------------------------------------------------------------------------


class TrayAgent:
    """
    Tray collaborator. set_update_indicator() and the on_* listeners are
    called from the core loop; menu callbacks arrive on the tray thread.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._controller: Optional[ReconciliationController] = None
        self._updater: Optional[SelfUpdateOrchestrator] = None

        self._snapshot: Optional[ControllerSnapshot] = None
        self._update_snapshot: Optional[SelfUpdateSnapshot] = None
        self._last_message: Optional[UserMessage] = None
        self._has_update = False

        self.icon = pystray.Icon(
            "story_launcher_tray",
            create_icon_image(False),
            self._tooltip(),
            menu=self._create_menu(),
        )

    def attach(
        self,
        loop: asyncio.AbstractEventLoop,
        controller: ReconciliationController,
        updater: SelfUpdateOrchestrator,
    ) -> None:
        self._loop = loop
        self._controller = controller
        self._updater = updater
        controller.add_listener(self.on_controller_changed)
        updater.add_listener(self.on_self_update_changed)

    # -- core -> tray ------------------------------------------------------

    def _tooltip(self) -> str:
        tooltip = f"{config.APP_NAME} v{get_version()}"
        if self._has_update:
            tooltip += " (1 update)"
        return tooltip

    def set_update_indicator(self, has_update: bool) -> None:
        self._has_update = has_update
        self.icon.icon = create_icon_image(has_update)
        self.icon.title = self._tooltip()

    def on_controller_changed(self, snapshot: ControllerSnapshot) -> None:
        self._snapshot = snapshot
        message = snapshot.message
        if message is not None and message is not self._last_message:
            self._show_message(message)
            # Messages are one-shot; the notification is their only display.
            controller = self._controller
            if controller is not None:
                self._call(controller.dismiss_message)
        self._last_message = message
        self._refresh_menu()

    def on_self_update_changed(self, snapshot: SelfUpdateSnapshot) -> None:
        previous = self._update_snapshot
        self._update_snapshot = snapshot
        if snapshot.phase is UpdatePhase.READY and (previous is None or previous.phase is not UpdatePhase.READY):
            self._notify(describe_ready_update(snapshot.app_update), "Update ready to install")
        self._refresh_menu()

    def _show_message(self, message: UserMessage) -> None:
        title = config.APP_NAME if message.kind == "success" else f"{config.APP_NAME}: error"
        self._notify(message.text, title)

    def _notify(self, text: str, title: str) -> None:
        logger.info("%s: %s", title, text)
        try:
            self.icon.notify(text, title)
        except Exception as e:
            # Not every pystray backend supports notifications.
            logger.debug("Tray notification failed: %s", e)

    def _refresh_menu(self) -> None:
        try:
            self.icon.update_menu()
        except Exception as e:
            logger.debug("Failed to refresh tray menu: %s", e)

    # -- tray -> core ------------------------------------------------------

    def _submit(self, coro: Coroutine[Any, Any, Any]) -> None:
        if self._loop is None:
            coro.close()
            return
        asyncio.run_coroutine_threadsafe(coro, self._loop)

    def _call(self, fn: Callable[[], Any]) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(fn)

    # -- menu state --------------------------------------------------------

    def _tool_installed(self) -> bool:
        snap = self._snapshot
        return bool(snap and snap.status and snap.status.installed)

    def _tool_has_update(self) -> bool:
        snap = self._snapshot
        return bool(snap and snap.status and snap.status.has_update)

    def _not_updating(self) -> bool:
        snap = self._snapshot
        return not (snap and snap.is_updating)

    def _restart_visible(self) -> bool:
        snap = self._update_snapshot
        return bool(snap and snap.banner_visible and snap.phase is UpdatePhase.READY)

    def _download_text(self) -> str:
        snap = self._update_snapshot
        if snap is None or snap.app_update is None:
            return ""
        update = snap.app_update
        return f"Downloading update v{update.version} ({round(update.progress)}%)"

    def _download_visible(self) -> bool:
        snap = self._update_snapshot
        return bool(snap and snap.app_update and snap.app_update.downloading)

    def _setting(self, attr: str) -> bool:
        snap = self._snapshot
        return bool(snap and getattr(snap.settings, attr))

    # -- menu --------------------------------------------------------------

    def _create_menu(self) -> Menu:
        def open_tool(_icon, _item):
            if self._controller is not None:
                self._submit(self._controller.launch_tool())

        def update_tool(_icon, _item):
            if self._controller is not None:
                self._submit(self._controller.update_now())

        def open_app(app: WebApp) -> Callable[[Any, Any], None]:
            def handler(_icon, _item):
                if self._controller is not None:
                    controller = self._controller
                    self._call(lambda: controller.open_web_app(app))

            return handler

        def check_updates(_icon, _item):
            self._bus.emit(CHECK_UPDATES)

        def restart(_icon, _item):
            if self._updater is not None:
                self._call(self._updater.restart)

        def later(_icon, _item):
            if self._updater is not None:
                self._call(self._updater.dismiss)

        def toggle(attr: str) -> Callable[[Any, Any], None]:
            def handler(_icon, _item):
                if self._controller is not None:
                    self._submit(self._controller.set_setting(attr, not self._setting(attr)))

            return handler

        def quit_app(_icon, _item):
            logger.info("Tray agent exiting by user request.")
            self.stop()

        web_items = [Item(app.name, open_app(app)) for app in WEB_APPS]

        return Menu(
            Item(lambda _item: describe_status(self._snapshot), None, enabled=False),
            Item(config.TOOL_NAME, open_tool, visible=lambda _item: self._tool_installed()),
            Item(
                f"Update {config.TOOL_NAME}",
                update_tool,
                visible=lambda _item: self._tool_has_update(),
                enabled=lambda _item: self._not_updating(),
            ),
            *web_items,
            Menu.SEPARATOR,
            Item("Check for Updates", check_updates),
            Item(lambda _item: self._download_text(), None, enabled=False,
                 visible=lambda _item: self._download_visible()),
            Item("Restart to Update", restart, visible=lambda _item: self._restart_visible()),
            Item("Later", later, visible=lambda _item: self._restart_visible()),
            Menu.SEPARATOR,
            Item(
                "Auto-update on launch",
                toggle("auto_update_on_launch"),
                checked=lambda _item: self._setting("auto_update_on_launch"),
            ),
            Item(
                "Launch at login",
                toggle("launch_at_login"),
                checked=lambda _item: self._setting("launch_at_login"),
            ),
            Menu.SEPARATOR,
            Item(f"Quit {config.APP_NAME}", quit_app),
        )

    # -- lifecycle ---------------------------------------------------------

    def run(self, setup: Optional[Callable[[pystray.Icon], None]] = None) -> None:
        """Run the tray event loop (blocking, main thread)."""
        self.icon.run(setup=setup)

    def stop(self) -> None:
        self.icon.stop()
