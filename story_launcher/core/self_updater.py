# story_launcher/core/self_updater.py

"""
Self-updater for Story Launcher.

This module is responsible for:
- Checking a remote JSON "update feed" for the latest launcher version.
- Streaming the new build into a local staging area, reporting progress
  as a sequence of download events.
- Verifying the staged file and remembering it until the user restarts.
- Driving the whole thing through a small state machine
  (SelfUpdateOrchestrator) that runs once per process, in the background,
  and never lets a failure escape.

The update feed is a small JSON document, for example:

    {
      "latest_version": "0.2.0",
      "download_url": "https://github.com/joyrider00/story-launcher/releases/download/v0.2.0/Story.Launcher_0.2.0_aarch64.dmg",
      "sha256": "9f2c...",
      "changelog": "Tray icon shows pending tool updates."
    }

Only HTTPS URLs should be used.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import json
import os
import subprocess
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Union

import aiohttp

from . import config
from .logger import get_logger, log_action
from .models import AppUpdate, RestartError, SelfUpdateError
from .version import get_version

logger = get_logger("self_updater")


# ---------------------------------------------------------------------------
# Version comparison helpers
# ---------------------------------------------------------------------------


def _parse_version(v: str) -> tuple:
    """
    Parse a version string like '1.2.3' (or 'v1.2.3') into a tuple of
    integers so that it can be compared lexicographically.

    Non-numeric suffixes ('1.0.0-beta1') are ignored for ordering purposes.
    This is not a full semantic version parser, but it's good enough
    for 'major.minor.patch' style versions.
    """
    parts = v.strip().lstrip("vV").split(".")
    numeric_parts = []
    for p in parts:
        num_str = ""
        for ch in p:
            if ch.isdigit():
                num_str += ch
            else:
                break
        numeric_parts.append(int(num_str) if num_str else 0)
    while len(numeric_parts) > 1 and numeric_parts[-1] == 0:
        numeric_parts.pop()
    return tuple(numeric_parts)


def is_remote_newer(current: str, remote: str) -> bool:
    """
    Returns True if remote version > current version.
    """
    return _parse_version(remote) > _parse_version(current)


# ---------------------------------------------------------------------------
# Download events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DownloadStarted:
    total_size: Optional[int] = None


@dataclass(frozen=True)
class DownloadProgress:
    chunk_size: int


@dataclass(frozen=True)
class DownloadFinished:
    pass


DownloadEvent = Union[DownloadStarted, DownloadProgress, DownloadFinished]


@dataclass(frozen=True)
class PendingRelease:
    """
    A newer launcher release found on the feed. download() streams it into
    the staging area and must be consumed at most once.
    """

    version: str
    download: Callable[[], AsyncIterator[DownloadEvent]]
    changelog: Optional[str] = None


@dataclass(frozen=True)
class FeedEntry:
    version: str
    download_url: str
    sha256: Optional[str] = None
    changelog: Optional[str] = None


def parse_feed(data: object) -> FeedEntry:
    """
    Validate the decoded feed JSON. Raises SelfUpdateError when required
    fields are missing.
    """
    if not isinstance(data, dict):
        raise SelfUpdateError("Update feed JSON must be an object at the top level.")

    version = str(data.get("latest_version", "")).strip()
    download_url = str(data.get("download_url", "")).strip()
    if not version or not download_url:
        raise SelfUpdateError("Update feed is missing required fields (latest_version or download_url).")
    if not download_url.startswith("https://"):
        raise SelfUpdateError(f"Refusing non-HTTPS download URL: {download_url}")

    sha256 = str(data.get("sha256", "")).strip().lower() or None
    changelog = data.get("changelog")
    return FeedEntry(
        version=version,
        download_url=download_url,
        sha256=sha256,
        changelog=changelog if isinstance(changelog, str) else None,
    )


# ---------------------------------------------------------------------------
# Staging + verification
# ---------------------------------------------------------------------------


def calculate_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_sha256(path: Path, entry: FeedEntry) -> None:
    """
    Default verifier: compare the staged file with the feed's sha256.
    Feeds without a digest are accepted as-is.
    """
    if entry.sha256 is None:
        logger.warning("Update feed has no sha256 for %s; skipping verification", entry.version)
        return
    actual = calculate_sha256(path)
    if actual.lower() != entry.sha256:
        raise SelfUpdateError(f"Installer hash mismatch: expected {entry.sha256} but received {actual}")


Verifier = Callable[[Path, FeedEntry], None]


class StagingArea:
    """
    Directory holding a downloaded launcher build until the user restarts.
    A pending.json marker records which file is ready to install.
    """

    MARKER = "pending.json"

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = root or config.get_staging_dir()

    def path_for(self, filename: str) -> Path:
        return self.root / filename

    def stage(self, version: str, path: Path) -> None:
        marker = self.root / self.MARKER
        marker.write_text(json.dumps({"version": version, "path": str(path)}), encoding="utf-8")

    def pending(self) -> Optional[Path]:
        marker = self.root / self.MARKER
        try:
            data = json.loads(marker.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        path = Path(data.get("path", "")) if isinstance(data, dict) else None
        return path if path and path.is_file() else None

    def clear(self) -> None:
        try:
            (self.root / self.MARKER).unlink()
        except FileNotFoundError:
            pass


# ---------------------------------------------------------------------------
# Release channel
# ---------------------------------------------------------------------------


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)


def _default_session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        headers={"User-Agent": f"Story-Launcher/{get_version()}"},
    )


class FeedReleaseChannel:
    """
    Release-channel collaborator backed by the JSON update feed.
    """

    def __init__(
        self,
        feed_url: Optional[str] = None,
        *,
        staging: Optional[StagingArea] = None,
        current_version: Optional[str] = None,
        verifier: Verifier = verify_sha256,
        session_factory: Callable[[], aiohttp.ClientSession] = _default_session,
    ) -> None:
        self.feed_url = feed_url or config.get_feed_url()
        self.staging = staging or StagingArea()
        self.current_version = current_version or get_version()
        self._verify = verifier
        self._session_factory = session_factory

    async def check_for_update(self) -> Optional[PendingRelease]:
        entry = await self._fetch_feed()
        logger.info("Current version: %s, Remote latest: %s", self.current_version, entry.version)

        if not is_remote_newer(self.current_version, entry.version):
            return None

        return PendingRelease(
            version=entry.version,
            changelog=entry.changelog,
            download=lambda: self._download(entry),
        )

    async def _fetch_feed(self) -> FeedEntry:
        logger.info("Fetching update feed from: %s", self.feed_url)
        timeout = aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT_SECONDS)
        try:
            async with self._session_factory() as session:
                async with session.get(self.feed_url, timeout=timeout) as resp:
                    resp.raise_for_status()
                    # raw.githubusercontent.com serves JSON as text/plain
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SelfUpdateError(f"Failed to reach update server: {e}") from e
        except json.JSONDecodeError as e:
            raise SelfUpdateError(f"Invalid update feed JSON: {e}") from e
        return parse_feed(data)

    async def _download(self, entry: FeedEntry) -> AsyncIterator[DownloadEvent]:
        filename = entry.download_url.rsplit("/", 1)[-1] or f"story-launcher-{entry.version}"
        dest = self.staging.path_for(filename)
        partial = dest.with_name(dest.name + ".part")
        timeout = aiohttp.ClientTimeout(total=config.DOWNLOAD_TIMEOUT_SECONDS)

        logger.info("Downloading update from %s to %s", entry.download_url, dest)
        try:
            self.staging.root.mkdir(parents=True, exist_ok=True)
            async with self._session_factory() as session:
                async with session.get(entry.download_url, timeout=timeout) as resp:
                    resp.raise_for_status()
                    length = resp.headers.get("Content-Length")
                    yield DownloadStarted(int(length) if length and length.isdigit() else None)

                    with open(partial, "wb") as f:
                        async for chunk in resp.content.iter_chunked(config.DOWNLOAD_CHUNK_SIZE):
                            f.write(chunk)
                            yield DownloadProgress(len(chunk))

            os.replace(partial, dest)
        except aiohttp.ClientError as e:
            _discard(partial)
            raise SelfUpdateError(f"Failed to download update: {e}") from e
        except OSError as e:
            _discard(partial)
            raise SelfUpdateError(f"Failed to store update: {e}") from e

        # Verification hashes the whole file; keep it off the core loop.
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._verify, dest, entry)
            self.staging.stage(entry.version, dest)
        except SelfUpdateError:
            _discard(dest)
            raise
        except OSError as e:
            _discard(dest)
            raise SelfUpdateError(f"Failed to store update: {e}") from e

        logger.info("Update %s staged at %s", entry.version, dest)
        yield DownloadFinished()


# ---------------------------------------------------------------------------
# Restart
# ---------------------------------------------------------------------------


def _spawn(args: List[str]) -> None:
    subprocess.Popen(args, close_fds=True)


def _open_installer(path: Path) -> None:
    if os.name == "nt":
        os.startfile(str(path))  # type: ignore[attr-defined]
    elif sys.platform == "darwin":
        subprocess.Popen(["open", str(path)])
    else:
        subprocess.Popen([str(path)])


class Relauncher:
    """
    Restart collaborator: hand over to the staged installer (or a fresh
    launcher process when nothing is staged) and shut this process down.
    """

    def __init__(
        self,
        staging: StagingArea,
        shutdown: Callable[[], None],
        *,
        open_installer: Callable[[Path], None] = _open_installer,
        spawn: Callable[[List[str]], None] = _spawn,
    ) -> None:
        self._staging = staging
        self._shutdown = shutdown
        self._open_installer = open_installer
        self._spawn = spawn

    def relaunch(self) -> None:
        installer = self._staging.pending()
        try:
            if installer is not None:
                logger.info("Starting staged installer %s", installer)
                # The installer starts the new launcher itself.
                self._open_installer(installer)
                self._staging.clear()
            else:
                self._spawn([sys.executable, "-m", "story_launcher.main"])
        except OSError as e:
            raise RestartError(f"Failed to relaunch: {e}") from e
        self._shutdown()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ReleaseChannel(Protocol):
    def check_for_update(self) -> Awaitable[Optional[PendingRelease]]: ...


class Restarter(Protocol):
    def relaunch(self) -> None: ...


class UpdatePhase(enum.Enum):
    IDLE = "idle"
    CHECKING = "checking"
    NO_UPDATE = "no_update"
    DOWNLOADING = "downloading"
    READY = "ready"
    DISMISSED = "dismissed"


class _DownloadState(enum.Enum):
    WAITING = "waiting"
    RECEIVING = "receiving"
    DONE = "done"


@dataclass(frozen=True)
class SelfUpdateSnapshot:
    phase: UpdatePhase
    app_update: Optional[AppUpdate]
    banner_visible: bool


def compute_progress(downloaded: int, total: Optional[int]) -> float:
    """
    Percentage shown while downloading. Never reaches 100 before the
    download has finished; unknown sizes report a fixed midpoint.
    """
    if not total:
        return 50.0
    return min(downloaded / total * 100.0, 99.0)


class SelfUpdateOrchestrator:
    """
    Idle -> Checking -> (NoUpdate | Downloading -> Ready [-> Dismissed]).

    Any failure while checking or downloading discards the AppUpdate and
    returns to Idle. The cycle runs at most once per process.
    """

    def __init__(
        self,
        channel: ReleaseChannel,
        restarter: Restarter,
        *,
        delay: float = config.SELF_UPDATE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._channel = channel
        self._restarter = restarter
        self._delay = delay
        self._sleep = sleep

        self._phase = UpdatePhase.IDLE
        self._app_update: Optional[AppUpdate] = None
        self._download_state = _DownloadState.WAITING
        self._total: Optional[int] = None
        self._downloaded = 0
        self._started = False
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[SelfUpdateSnapshot], None]] = []

    # -- snapshots ---------------------------------------------------------

    @property
    def phase(self) -> UpdatePhase:
        return self._phase

    @property
    def app_update(self) -> Optional[AppUpdate]:
        return self._app_update

    @property
    def banner_visible(self) -> bool:
        return self._app_update is not None and self._phase is not UpdatePhase.DISMISSED

    def snapshot(self) -> SelfUpdateSnapshot:
        return SelfUpdateSnapshot(self._phase, self._app_update, self.banner_visible)

    def add_listener(self, callback: Callable[[SelfUpdateSnapshot], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        snap = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snap)
            except Exception:
                logger.exception("Self-update listener failed")

    def _set(self, phase: UpdatePhase, app_update: Optional[AppUpdate]) -> None:
        self._phase = phase
        self._app_update = app_update
        self._notify()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> asyncio.Task:
        """
        Schedule the single background cycle on the running loop.
        Calling start() again returns the same task.
        """
        if self._task is None:
            self._task = asyncio.ensure_future(self.run())
        return self._task

    async def run(self) -> None:
        if self._started:
            return
        self._started = True

        await self._sleep(self._delay)
        self._set(UpdatePhase.CHECKING, None)

        try:
            release = await self._channel.check_for_update()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Self-update check failed: %s", e)
            self._set(UpdatePhase.IDLE, None)
            return

        if release is None:
            logger.info("Launcher is up to date")
            self._set(UpdatePhase.NO_UPDATE, None)
            return

        logger.info("Launcher update available: %s", release.version)
        self._download_state = _DownloadState.WAITING
        self._total = None
        self._downloaded = 0
        self._set(UpdatePhase.DOWNLOADING, AppUpdate(version=release.version, changelog=release.changelog))

        try:
            async for event in release.download():
                self.handle_event(event)
            if self._phase is not UpdatePhase.READY:
                raise SelfUpdateError("Download ended without finishing")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Self-update download failed: %s", e)
            self._set(UpdatePhase.IDLE, None)

    def handle_event(self, event: DownloadEvent) -> None:
        """
        Apply one download event. Events that do not fit the current
        download state are ignored.
        """
        current = self._app_update
        if self._phase is not UpdatePhase.DOWNLOADING or current is None:
            logger.debug("Ignoring %r outside of a download", event)
            return

        if isinstance(event, DownloadStarted):
            if self._download_state is not _DownloadState.WAITING:
                logger.debug("Ignoring repeated start event")
                return
            self._download_state = _DownloadState.RECEIVING
            self._total = event.total_size
            self._set(UpdatePhase.DOWNLOADING, replace(current, downloading=True))

        elif isinstance(event, DownloadProgress):
            if self._download_state is not _DownloadState.RECEIVING:
                logger.debug("Ignoring progress event before start")
                return
            self._downloaded += event.chunk_size
            progress = max(current.progress, compute_progress(self._downloaded, self._total))
            self._set(UpdatePhase.DOWNLOADING, replace(current, progress=progress))

        elif isinstance(event, DownloadFinished):
            if self._download_state is not _DownloadState.RECEIVING:
                logger.debug("Ignoring finish event before start")
                return
            self._download_state = _DownloadState.DONE
            logger.info("Launcher update %s downloaded and ready", current.version)
            self._set(
                UpdatePhase.READY,
                replace(current, downloading=False, downloaded_and_ready=True, progress=100.0),
            )

    # -- user actions ------------------------------------------------------

    def restart(self) -> bool:
        """
        Relaunch into the staged update. Returns False (and stays Ready)
        when there is nothing to restart into or the relaunch fails.
        """
        if self._phase is not UpdatePhase.READY:
            return False

        version = self._app_update.version if self._app_update else "?"
        log_action("restart_for_update", "START", version)
        try:
            self._restarter.relaunch()
        except Exception as e:
            log_action("restart_for_update", "ERROR", str(e))
            return False
        log_action("restart_for_update", "SUCCESS", version)
        return True

    def dismiss(self) -> None:
        if self._phase is UpdatePhase.READY:
            self._set(UpdatePhase.DISMISSED, self._app_update)
