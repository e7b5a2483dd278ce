# story_launcher/core/controller.py

"""
Reconciliation Controller.

Owns the launcher's view of the managed local tool and keeps it
consistent no matter where a refresh comes from (startup, the refresh
button, the tray's "Check for Updates", the re-probe after an update).

Startup order:
1. Load settings (this also reconciles launch-at-login with the OS).
2. Probe the tool.
3. If auto-update is on and the tool is stale, update it silently and
   probe again. This happens at most once per launch.

After every status change the tray indicator is told whether an update is
pending. Probes may overlap; whichever resolves last wins.

All methods must be called on the core event loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional

from .events import CHECK_UPDATES, EventBus
from .logger import get_logger
from .models import Settings, ToolStatus, UpdateResult, UserMessage
from .settings_store import SettingsAdapter
from .tool_status import LocalTool, ToolStatusProber
from .tool_updater import ToolUpdateExecutor
from .web_apps import WebApp, open_web_app

logger = get_logger("controller")

UPDATE_COMPLETE_MESSAGE = "Update complete!"


@dataclass(frozen=True)
class ControllerSnapshot:
    status: Optional[ToolStatus]
    is_loading: bool
    is_updating: bool
    message: Optional[UserMessage]
    settings: Settings
    settings_loaded: bool

    @property
    def update_count(self) -> int:
        return 1 if self.status is not None and self.status.has_update else 0


class ReconciliationController:
    def __init__(
        self,
        tool: LocalTool,
        settings: SettingsAdapter,
        *,
        prober: Optional[ToolStatusProber] = None,
        executor: Optional[ToolUpdateExecutor] = None,
        set_update_indicator: Optional[Callable[[bool], None]] = None,
        web_opener: Callable[[WebApp], UpdateResult] = open_web_app,
    ) -> None:
        self._tool = tool
        self._settings = settings
        self._prober = prober or ToolStatusProber(tool)
        self._executor = executor or ToolUpdateExecutor(tool)
        self._set_update_indicator = set_update_indicator
        self._web_opener = web_opener

        self._status: Optional[ToolStatus] = None
        self._pending_probes = 0
        self._updating = False
        self._message: Optional[UserMessage] = None
        self._indicator: Optional[bool] = None

        self._started = False
        self._settings_ready = asyncio.Event()
        self._auto_update_decided = False
        self._listeners: List[Callable[[ControllerSnapshot], None]] = []

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def status(self) -> Optional[ToolStatus]:
        return self._status

    @property
    def is_updating(self) -> bool:
        return self._updating

    @property
    def message(self) -> Optional[UserMessage]:
        return self._message

    @property
    def update_count(self) -> int:
        return self.snapshot().update_count

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            status=self._status,
            is_loading=self._pending_probes > 0,
            is_updating=self._updating,
            message=self._message,
            settings=self._settings.settings,
            settings_loaded=self._settings_ready.is_set(),
        )

    def add_listener(self, callback: Callable[[ControllerSnapshot], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        snap = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snap)
            except Exception:
                logger.exception("Controller listener failed")

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        await self._settings.load()
        self._settings_ready.set()
        self._notify()

        status = await self.refresh()
        await self._auto_update(status)

    async def _auto_update(self, status: ToolStatus) -> None:
        if self._auto_update_decided:
            return
        self._auto_update_decided = True

        if not self._settings.settings.auto_update_on_launch or not status.has_update:
            return
        if self._updating:
            logger.info("Skipping auto-update: an update is already running")
            return

        logger.info("Auto-updating %s on launch", ToolStatus.short_commit(status.local_commit))
        self._updating = True
        self._notify()
        try:
            result = await self._executor.execute(silent=True)
        finally:
            self._updating = False
            self._notify()

        if not result.success:
            logger.warning("Auto-update failed: %s", result.message)
        await self.refresh()

    def subscribe(self, bus: EventBus) -> Callable[[], None]:
        """
        Re-probe whenever the tray asks to check for updates.
        """
        return bus.subscribe(CHECK_UPDATES, self.refresh)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def refresh(self) -> ToolStatus:
        await self._settings_ready.wait()

        self._pending_probes += 1
        self._notify()
        try:
            status = await self._prober.probe()
        finally:
            self._pending_probes -= 1

        self._status = status
        if status.has_update != self._indicator:
            self._mirror_indicator(status.has_update)
        self._notify()
        return status

    def _mirror_indicator(self, has_update: bool) -> None:
        self._indicator = has_update
        if self._set_update_indicator is None:
            return
        try:
            self._set_update_indicator(has_update)
        except Exception as e:
            logger.warning("Failed to update tray indicator: %s", e)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def update_now(self) -> Optional[UpdateResult]:
        """
        Manual update. Returns None when an update is already running.
        """
        if self._updating:
            logger.info("Ignoring update request: an update is already running")
            return None

        self._updating = True
        self._message = None
        self._notify()
        try:
            result = await self._executor.execute()
        finally:
            self._updating = False

        if result.success:
            self._message = UserMessage.success(UPDATE_COMPLETE_MESSAGE)
        else:
            self._message = UserMessage.error(result.message)
        self._notify()

        await self.refresh()
        return result

    async def launch_tool(self) -> UpdateResult:
        try:
            result = await self._tool.launch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Tool launch raised: %s", e)
            result = UpdateResult(False, str(e) or type(e).__name__)

        if not result.success:
            self._message = UserMessage.error(result.message)
            self._notify()
        return result

    def open_web_app(self, app: WebApp) -> UpdateResult:
        result = self._web_opener(app)
        if not result.success:
            self._message = UserMessage.error(result.message)
            self._notify()
        return result

    async def set_setting(self, attr: str, value: bool) -> Settings:
        settings = await self._settings.set(attr, value)
        self._notify()
        return settings

    def dismiss_message(self) -> None:
        if self._message is not None:
            self._message = None
            self._notify()
