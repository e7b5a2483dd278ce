import asyncio
import hashlib
import sys
import threading

import aiohttp
import pytest

from story_launcher.core.models import RestartError, SelfUpdateError
from story_launcher.core.self_updater import (
    DownloadFinished,
    DownloadProgress,
    DownloadStarted,
    FeedReleaseChannel,
    Relauncher,
    SelfUpdateOrchestrator,
    StagingArea,
    UpdatePhase,
    compute_progress,
    is_remote_newer,
    parse_feed,
)

from tests.fakes import FakeChannel, FakeRestarter, no_sleep


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeContent:
    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_chunked(self, _size):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeResponse:
    def __init__(self, json_data=None, chunks=(), headers=None):
        self._json = json_data
        self.content = FakeContent(list(chunks))
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        return None

    async def json(self, content_type="application/json"):
        return self._json


class FakeSession:
    def __init__(self, responses, error=None):
        self._responses = responses
        self._error = error
        self.requested = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url, timeout=None):
        self.requested.append(url)
        if self._error is not None:
            raise self._error
        return self._responses[url]


FEED_URL = "https://example.com/latest.json"
DOWNLOAD_URL = "https://example.com/dl/Story.Launcher_0.2.0.dmg"
PAYLOAD = b"abcdef"


def make_channel(tmp_path, sha256=None, current="0.1.0", error=None, chunks=(b"abc", b"def"), **kwargs):
    feed = {
        "latest_version": "0.2.0",
        "download_url": DOWNLOAD_URL,
        "sha256": sha256 or hashlib.sha256(PAYLOAD).hexdigest(),
        "changelog": "Tray badge",
    }
    session = FakeSession(
        {
            FEED_URL: FakeResponse(json_data=feed),
            DOWNLOAD_URL: FakeResponse(chunks=chunks, headers={"Content-Length": "6"}),
        },
        error=error,
    )
    return FeedReleaseChannel(
        FEED_URL,
        staging=StagingArea(tmp_path),
        current_version=current,
        session_factory=lambda: session,
        **kwargs,
    )


async def download_all(channel):
    release = await channel.check_for_update()
    return release, [event async for event in release.download()]


def make_orchestrator(channel, restarter=None, **kwargs):
    kwargs.setdefault("delay", 0)
    kwargs.setdefault("sleep", no_sleep)
    orchestrator = SelfUpdateOrchestrator(channel, restarter or FakeRestarter(), **kwargs)
    snapshots = []
    orchestrator.add_listener(snapshots.append)
    return orchestrator, snapshots


def progress_seen(snapshots):
    return [s.app_update.progress for s in snapshots if s.app_update is not None]


# ---------------------------------------------------------------------------
# Feed + versions
# ---------------------------------------------------------------------------


def test_is_remote_newer():
    assert is_remote_newer("0.1.0", "0.2.0")
    assert is_remote_newer("v0.9.9", "1.0")
    assert not is_remote_newer("0.2.0", "0.2")
    assert not is_remote_newer("1.0.0", "0.9.12")


def test_parse_feed_requires_fields():
    with pytest.raises(SelfUpdateError):
        parse_feed({"latest_version": "0.2.0"})
    with pytest.raises(SelfUpdateError):
        parse_feed(["not", "a", "dict"])


def test_parse_feed_rejects_plain_http():
    with pytest.raises(SelfUpdateError):
        parse_feed({"latest_version": "0.2.0", "download_url": "http://example.com/x.dmg"})


def test_parse_feed_normalises_digest():
    entry = parse_feed({"latest_version": "0.2.0", "download_url": DOWNLOAD_URL, "sha256": " ABCD "})
    assert entry.sha256 == "abcd"
    assert entry.changelog is None


# ---------------------------------------------------------------------------
# FeedReleaseChannel
# ---------------------------------------------------------------------------


def test_channel_up_to_date(tmp_path):
    channel = make_channel(tmp_path, current="0.2.0")
    assert asyncio.run(channel.check_for_update()) is None


def test_channel_downloads_and_stages(tmp_path):
    channel = make_channel(tmp_path)

    release, events = asyncio.run(download_all(channel))

    assert release.version == "0.2.0"
    assert release.changelog == "Tray badge"
    assert events == [DownloadStarted(6), DownloadProgress(3), DownloadProgress(3), DownloadFinished()]
    staged = tmp_path / "Story.Launcher_0.2.0.dmg"
    assert staged.read_bytes() == PAYLOAD
    assert channel.staging.pending() == staged
    assert not (tmp_path / "Story.Launcher_0.2.0.dmg.part").exists()


def test_channel_rejects_hash_mismatch(tmp_path):
    channel = make_channel(tmp_path, sha256="0" * 64)

    with pytest.raises(SelfUpdateError):
        asyncio.run(download_all(channel))
    assert channel.staging.pending() is None


def test_channel_removes_partial_file_on_broken_stream(tmp_path):
    channel = make_channel(tmp_path, chunks=[b"abc", aiohttp.ClientPayloadError("connection reset")])

    with pytest.raises(SelfUpdateError):
        asyncio.run(download_all(channel))

    assert list(tmp_path.iterdir()) == []


def test_channel_removes_file_failing_verification(tmp_path):
    channel = make_channel(tmp_path, sha256="0" * 64)

    with pytest.raises(SelfUpdateError):
        asyncio.run(download_all(channel))

    assert not (tmp_path / "Story.Launcher_0.2.0.dmg").exists()


def test_channel_verifies_off_the_event_loop_thread(tmp_path):
    threads = []
    channel = make_channel(tmp_path, verifier=lambda path, entry: threads.append(threading.current_thread()))

    asyncio.run(download_all(channel))

    assert len(threads) == 1
    assert threads[0] is not threading.current_thread()


def test_channel_wraps_network_errors(tmp_path):
    channel = make_channel(tmp_path, error=aiohttp.ClientConnectionError("offline"))
    with pytest.raises(SelfUpdateError):
        asyncio.run(channel.check_for_update())


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def test_compute_progress():
    assert compute_progress(10, None) == 50.0
    assert compute_progress(10, 0) == 50.0
    assert compute_progress(50, 100) == 50.0
    assert compute_progress(100, 100) == 99.0


def test_progress_reaches_100_only_when_finished():
    channel = FakeChannel([DownloadStarted(200), DownloadProgress(100), DownloadProgress(100), DownloadFinished()])
    orchestrator, snapshots = make_orchestrator(channel)

    asyncio.run(orchestrator.run())

    assert progress_seen(snapshots) == [0.0, 0.0, 50.0, 99.0, 100.0]
    assert snapshots[-1].phase is UpdatePhase.READY
    update = orchestrator.app_update
    assert update.downloaded_and_ready and not update.downloading
    assert orchestrator.banner_visible


def test_changelog_travels_with_the_update():
    channel = FakeChannel([DownloadStarted(1), DownloadProgress(1), DownloadFinished()], changelog="Faster sync")
    orchestrator, _ = make_orchestrator(channel)

    asyncio.run(orchestrator.run())

    assert orchestrator.app_update.changelog == "Faster sync"


def test_unknown_size_reports_midpoint():
    channel = FakeChannel([DownloadStarted(0), DownloadProgress(10), DownloadProgress(10), DownloadFinished()])
    orchestrator, snapshots = make_orchestrator(channel)

    asyncio.run(orchestrator.run())

    assert progress_seen(snapshots) == [0.0, 0.0, 50.0, 50.0, 100.0]


def test_out_of_order_events_are_ignored():
    channel = FakeChannel([
        DownloadProgress(10),
        DownloadFinished(),
        DownloadStarted(100),
        DownloadStarted(100),
        DownloadProgress(50),
        DownloadFinished(),
    ])
    orchestrator, snapshots = make_orchestrator(channel)

    asyncio.run(orchestrator.run())

    assert progress_seen(snapshots) == [0.0, 0.0, 50.0, 100.0]
    assert orchestrator.phase is UpdatePhase.READY


# ---------------------------------------------------------------------------
# Orchestrator lifecycle
# ---------------------------------------------------------------------------


def test_waits_before_checking():
    channel = FakeChannel(None)
    delays = []

    async def sleep(delay):
        assert channel.checks == 0
        delays.append(delay)

    orchestrator, _ = make_orchestrator(channel, delay=3.0, sleep=sleep)
    asyncio.run(orchestrator.run())

    assert delays == [3.0]
    assert channel.checks == 1


def test_no_update_never_shows_banner():
    restarter = FakeRestarter()
    orchestrator, snapshots = make_orchestrator(FakeChannel(None), restarter)

    asyncio.run(orchestrator.run())

    assert orchestrator.phase is UpdatePhase.NO_UPDATE
    assert all(s.app_update is None and not s.banner_visible for s in snapshots)
    assert orchestrator.restart() is False
    orchestrator.dismiss()
    assert orchestrator.phase is UpdatePhase.NO_UPDATE
    assert restarter.calls == 0


def test_check_failure_returns_to_idle():
    orchestrator, _ = make_orchestrator(FakeChannel(check_error=SelfUpdateError("offline")))

    asyncio.run(orchestrator.run())

    assert orchestrator.phase is UpdatePhase.IDLE
    assert orchestrator.app_update is None


def test_download_failure_discards_update():
    channel = FakeChannel([DownloadStarted(10), SelfUpdateError("connection reset")])
    orchestrator, _ = make_orchestrator(channel)

    asyncio.run(orchestrator.run())

    assert orchestrator.phase is UpdatePhase.IDLE
    assert orchestrator.app_update is None
    assert not orchestrator.banner_visible


def test_truncated_stream_counts_as_failure():
    orchestrator, _ = make_orchestrator(FakeChannel([DownloadStarted(10), DownloadProgress(5)]))

    asyncio.run(orchestrator.run())

    assert orchestrator.phase is UpdatePhase.IDLE
    assert orchestrator.app_update is None


def test_cycle_runs_once():
    channel = FakeChannel(None)
    orchestrator, _ = make_orchestrator(channel)

    async def scenario():
        first = orchestrator.start()
        assert orchestrator.start() is first
        await first
        await orchestrator.run()

    asyncio.run(scenario())
    assert channel.checks == 1


def ready_orchestrator(restarter):
    orchestrator, _ = make_orchestrator(FakeChannel([DownloadStarted(1), DownloadProgress(1), DownloadFinished()]), restarter)
    asyncio.run(orchestrator.run())
    assert orchestrator.phase is UpdatePhase.READY
    return orchestrator


def test_restart_relaunches_when_ready():
    restarter = FakeRestarter()
    assert ready_orchestrator(restarter).restart() is True
    assert restarter.calls == 1


def test_restart_failure_keeps_update_ready():
    orchestrator = ready_orchestrator(FakeRestarter(RestartError("installer missing")))

    assert orchestrator.restart() is False
    assert orchestrator.phase is UpdatePhase.READY
    assert orchestrator.banner_visible


def test_dismiss_hides_banner_but_keeps_update():
    restarter = FakeRestarter()
    orchestrator = ready_orchestrator(restarter)

    orchestrator.dismiss()

    assert orchestrator.phase is UpdatePhase.DISMISSED
    assert orchestrator.app_update.version == "0.2.0"
    assert not orchestrator.banner_visible
    assert orchestrator.restart() is False
    assert restarter.calls == 0


# ---------------------------------------------------------------------------
# Relauncher
# ---------------------------------------------------------------------------


def test_relauncher_opens_staged_installer(tmp_path):
    staging = StagingArea(tmp_path)
    installer = tmp_path / "Story.Launcher_0.2.0.dmg"
    installer.write_bytes(PAYLOAD)
    staging.stage("0.2.0", installer)
    opened, spawned, shutdowns = [], [], []

    Relauncher(
        staging,
        lambda: shutdowns.append(True),
        open_installer=opened.append,
        spawn=spawned.append,
    ).relaunch()

    assert opened == [installer]
    assert spawned == []
    assert staging.pending() is None
    assert shutdowns == [True]


def test_relauncher_spawns_fresh_process_without_installer(tmp_path):
    spawned, shutdowns = [], []

    Relauncher(StagingArea(tmp_path), lambda: shutdowns.append(True), spawn=spawned.append).relaunch()

    assert spawned == [[sys.executable, "-m", "story_launcher.main"]]
    assert shutdowns == [True]


def test_relauncher_failure_does_not_shut_down(tmp_path):
    shutdowns = []

    def spawn(_args):
        raise OSError("no such file")

    with pytest.raises(RestartError):
        Relauncher(StagingArea(tmp_path), lambda: shutdowns.append(True), spawn=spawn).relaunch()
    assert shutdowns == []
