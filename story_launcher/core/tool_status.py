# story_launcher/core/tool_status.py

"""
Tool Status Prober.

Wraps the local tool's check_status() so that a probe always produces a
ToolStatus. Nothing raised by the tool (git missing, corrupt checkout,
network trouble) escapes: it ends up in ToolStatus.error with every
other field left at its "not installed" default.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Protocol

from .logger import get_logger
from .models import ToolStatus, UpdateResult

logger = get_logger("tool_status")


class LocalTool(Protocol):
    def check_status(self) -> Awaitable[ToolStatus]: ...

    def update(self) -> Awaitable[UpdateResult]: ...

    def launch(self) -> Awaitable[UpdateResult]: ...


class ToolStatusProber:
    def __init__(self, tool: LocalTool) -> None:
        self._tool = tool

    async def probe(self) -> ToolStatus:
        try:
            status = await self._tool.check_status()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Tool status probe failed: %s", e)
            return ToolStatus.failed(str(e) or type(e).__name__)

        logger.info(
            "Tool status: installed=%s local=%s remote=%s has_update=%s",
            status.installed,
            ToolStatus.short_commit(status.local_commit),
            ToolStatus.short_commit(status.remote_commit),
            status.has_update,
        )
        return status
