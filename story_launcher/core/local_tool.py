# story_launcher/core/local_tool.py

"""
The managed local tool: a script kept in sync with its git remote.

GitTool answers three questions for the launcher:
- check_status(): is the tool installed, which commit is checked out,
  which commit is on the remote branch?
- update(): clone (first install) or fast-forward pull, then sync the
  tool's Python dependencies from its requirements.txt.
- launch(): start the tool's entry script as a detached process.

Every external command goes through an async command runner so the
launcher's event loop is never blocked while git or pip are working.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from . import config
from .logger import get_logger, log_action
from .models import ToolError, ToolStatus, UpdateResult

logger = get_logger("local_tool")

CommandRunner = Callable[[Sequence[str], Optional[Path]], Awaitable[Tuple[int, str]]]
Spawner = Callable[[Sequence[str], Path], None]


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------


async def run_command(args: Sequence[str], cwd: Optional[Path] = None) -> Tuple[int, str]:
    """
    Run a command to completion and return (returncode, combined output).

    Raises ToolError if the executable cannot be started at all.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise ToolError(f"Failed to run {args[0]}: {e}") from e

    out, _ = await proc.communicate()
    text = out.decode("utf-8", errors="replace") if out else ""
    return proc.returncode or 0, text


def spawn_detached(args: Sequence[str], cwd: Path) -> None:
    """
    Start a process that outlives the launcher.
    """
    kwargs = {}
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True
    subprocess.Popen(
        list(args),
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **kwargs,
    )


_SKIP_PREFIXES = (
    "Requirement already satisfied",
    "Downloading ",
    "Using cached ",
    "Obtaining ",
)


def format_output_line(line: str) -> Optional[str]:
    """Return a cleaned git/pip output line worth showing, or None to skip it."""
    stripped = line.strip()
    if not stripped:
        return None
    for prefix in _SKIP_PREFIXES:
        if stripped.startswith(prefix):
            return None
    return stripped


def _last_meaningful_line(output: str) -> Optional[str]:
    lines: List[str] = [line for line in map(format_output_line, output.splitlines()) if line]
    return lines[-1] if lines else None


# ---------------------------------------------------------------------------
# Git-synced tool
# ---------------------------------------------------------------------------


class GitTool:
    """
    Local tool collaborator backed by a git checkout.
    """

    def __init__(
        self,
        checkout_dir: Optional[Path] = None,
        *,
        repo_url: str = config.TOOL_REPO_URL,
        remote: str = config.TOOL_REMOTE,
        branch: str = config.TOOL_BRANCH,
        entry_script: str = config.TOOL_ENTRY_SCRIPT,
        runner: CommandRunner = run_command,
        spawner: Spawner = spawn_detached,
        python: str = sys.executable,
    ) -> None:
        self.checkout_dir = checkout_dir or config.get_tool_dir()
        self.repo_url = repo_url
        self.remote = remote
        self.branch = branch
        self.entry_script = entry_script
        self._run = runner
        self._spawn = spawner
        self._python = python

    # -- status ------------------------------------------------------------

    def is_installed(self) -> bool:
        return (self.checkout_dir / ".git").exists()

    async def check_status(self) -> ToolStatus:
        if not self.is_installed():
            return ToolStatus(installed=False)

        local_commit = await self._git_output("rev-parse", "HEAD")
        if not local_commit:
            raise ToolError(f"Could not read HEAD of {self.checkout_dir}")

        local_version = await self._local_version()

        remote_commit: Optional[str] = None
        error: Optional[str] = None
        code, out = await self._run(
            ["git", "ls-remote", self.remote, f"refs/heads/{self.branch}"],
            self.checkout_dir,
        )
        if code == 0 and out.strip():
            remote_commit = out.split()[0]
        else:
            error = f"Failed to resolve remote {self.remote}/{self.branch}"
            detail = _last_meaningful_line(out)
            if detail:
                error += f": {detail}"
            logger.warning(error)

        return ToolStatus(
            installed=True,
            local_version=local_version,
            local_commit=local_commit,
            remote_commit=remote_commit,
            error=error,
        )

    async def _local_version(self) -> Optional[str]:
        version_file = self.checkout_dir / "VERSION"
        if version_file.is_file():
            try:
                text = version_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning("Failed to read %s: %s", version_file, e)
            else:
                if text:
                    return text
        return await self._git_output("describe", "--tags", "--always")

    async def _git_output(self, *args: str) -> Optional[str]:
        code, out = await self._run(["git", *args], self.checkout_dir)
        if code != 0:
            return None
        return out.strip() or None

    # -- update ------------------------------------------------------------

    async def update(self) -> UpdateResult:
        if self.is_installed():
            failure = await self._pull()
        else:
            failure = await self._clone()
        if failure is not None:
            return UpdateResult(False, failure)

        failure = await self._sync_requirements()
        if failure is not None:
            return UpdateResult(False, failure)

        head = await self._git_output("rev-parse", "HEAD")
        return UpdateResult(True, f"Updated to {ToolStatus.short_commit(head)}")

    async def _clone(self) -> Optional[str]:
        logger.info("Cloning %s into %s", self.repo_url, self.checkout_dir)
        self.checkout_dir.parent.mkdir(parents=True, exist_ok=True)
        code, out = await self._run(
            ["git", "clone", "--branch", self.branch, self.repo_url, str(self.checkout_dir)],
            None,
        )
        if code != 0:
            return _last_meaningful_line(out) or "git clone failed"
        return None

    async def _pull(self) -> Optional[str]:
        # A checkout extracted from an archive starts on a detached HEAD.
        code, _ = await self._run(["git", "symbolic-ref", "HEAD"], self.checkout_dir)
        if code != 0:
            logger.info("Detached HEAD detected, switching to %s", self.branch)
            await self._run(["git", "checkout", self.branch], self.checkout_dir)
            await self._run(
                ["git", "branch", f"--set-upstream-to={self.remote}/{self.branch}", self.branch],
                self.checkout_dir,
            )

        code, out = await self._run(
            ["git", "pull", "--ff-only", self.remote, self.branch],
            self.checkout_dir,
        )
        if code != 0:
            return _last_meaningful_line(out) or "git pull failed"
        return None

    async def _sync_requirements(self) -> Optional[str]:
        req = self.checkout_dir / "requirements.txt"
        if not req.is_file():
            return None
        code, out = await self._run(
            [self._python, "-m", "pip", "install", "-r", str(req), "--progress-bar", "off"],
            self.checkout_dir,
        )
        if code != 0:
            return _last_meaningful_line(out) or "pip install failed"
        return None

    # -- launch ------------------------------------------------------------

    async def launch(self) -> UpdateResult:
        if not self.is_installed():
            return UpdateResult(False, "App not installed")

        entry = self.checkout_dir / self.entry_script
        try:
            self._spawn([self._python, str(entry)], self.checkout_dir)
        except OSError as e:
            log_action("launch_tool", "ERROR", str(e))
            return UpdateResult(False, f"Failed to launch: {e}")

        log_action("launch_tool", "SUCCESS", str(entry))
        return UpdateResult(True, "Launched app")
