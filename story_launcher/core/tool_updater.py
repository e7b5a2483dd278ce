# story_launcher/core/tool_updater.py

"""
Tool Update Executor.

Runs the local tool's update unconditionally and always answers with an
UpdateResult. Whether an update is warranted, whether one is already in
flight and whether the outcome is shown to the user are all decided by
the caller (the Reconciliation Controller).
"""

from __future__ import annotations

import asyncio

from .logger import get_logger, log_action
from .models import UpdateResult
from .tool_status import LocalTool

logger = get_logger("tool_updater")


class ToolUpdateExecutor:
    def __init__(self, tool: LocalTool) -> None:
        self._tool = tool

    async def execute(self, *, silent: bool = False) -> UpdateResult:
        action = "auto_update_tool" if silent else "update_tool"
        log_action(action, "START")
        try:
            result = await self._tool.update()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Tool update raised")
            result = UpdateResult(False, str(e) or type(e).__name__)

        log_action(action, "SUCCESS" if result.success else "ERROR", result.message)
        return result
