import asyncio
import json

import pytest

from story_launcher.core.models import Settings, SettingsError
from story_launcher.core.settings_store import JsonSettingsStore, SettingsAdapter

from tests.fakes import FakeAutostart, FakeStore


# ---------------------------------------------------------------------------
# JsonSettingsStore
# ---------------------------------------------------------------------------


def test_store_missing_file_is_empty(tmp_path):
    store = JsonSettingsStore(tmp_path / "settings.json")
    assert store.get("autoUpdateOnLaunch") is None


def test_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonSettingsStore(path).get("launchAtLogin") is None


def test_store_flush_round_trips(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    store = JsonSettingsStore(path)
    store.set("launchAtLogin", True)
    store.flush()

    assert json.loads(path.read_text(encoding="utf-8")) == {"launchAtLogin": True}
    assert JsonSettingsStore(path).get("launchAtLogin") is True


def test_store_flush_failure_raises_settings_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JsonSettingsStore(blocker / "settings.json")
    store.set("launchAtLogin", True)
    with pytest.raises(SettingsError):
        store.flush()


# ---------------------------------------------------------------------------
# SettingsAdapter.load
# ---------------------------------------------------------------------------


def test_load_defaults_without_touching_autostart():
    autostart = FakeAutostart(enabled=True)
    adapter = SettingsAdapter(FakeStore(), autostart)

    settings = asyncio.run(adapter.load())

    assert settings == Settings(auto_update_on_launch=True, launch_at_login=False)
    assert autostart.log == []
    assert autostart.enabled


def test_load_enables_registration_when_persisted_on():
    autostart = FakeAutostart(enabled=False)
    adapter = SettingsAdapter(FakeStore({"launchAtLogin": True}), autostart)

    asyncio.run(adapter.load())

    assert autostart.enabled
    assert adapter.settings.launch_at_login


def test_load_disables_registration_when_persisted_off():
    autostart = FakeAutostart(enabled=True)
    adapter = SettingsAdapter(FakeStore({"launchAtLogin": False}), autostart)

    asyncio.run(adapter.load())

    assert not autostart.enabled


def test_load_leaves_matching_registration_alone():
    autostart = FakeAutostart(enabled=True)
    asyncio.run(SettingsAdapter(FakeStore({"launchAtLogin": True}), autostart).load())
    assert autostart.log == ["autostart:is_enabled"]


def test_load_ignores_hand_edited_string_values():
    autostart = FakeAutostart(enabled=True)
    adapter = SettingsAdapter(FakeStore({"launchAtLogin": "false", "autoUpdateOnLaunch": "false"}), autostart)

    settings = asyncio.run(adapter.load())

    assert settings == Settings(auto_update_on_launch=True, launch_at_login=False)
    assert autostart.log == []
    assert autostart.enabled


def test_load_falls_back_to_defaults_when_store_fails():
    store = FakeStore({"autoUpdateOnLaunch": False})
    store.fail_get = OSError("permission denied")
    adapter = SettingsAdapter(store, FakeAutostart())

    assert asyncio.run(adapter.load()) == Settings()


def test_load_survives_reconcile_failure():
    autostart = FakeAutostart(enabled=False)
    autostart.fail = OSError("registry locked")
    adapter = SettingsAdapter(FakeStore({"launchAtLogin": True, "autoUpdateOnLaunch": False}), autostart)

    assert asyncio.run(adapter.load()) == Settings(auto_update_on_launch=False, launch_at_login=True)


# ---------------------------------------------------------------------------
# SettingsAdapter.set
# ---------------------------------------------------------------------------


def test_set_persists_and_registers():
    store, autostart = FakeStore(), FakeAutostart()
    adapter = SettingsAdapter(store, autostart)

    settings = asyncio.run(adapter.set("launch_at_login", True))

    assert settings.launch_at_login
    assert store.data == {"launchAtLogin": True}
    assert store.flushes == 1
    assert autostart.enabled


def test_set_auto_update_does_not_touch_autostart():
    store, autostart = FakeStore(), FakeAutostart()
    asyncio.run(SettingsAdapter(store, autostart).set("auto_update_on_launch", False))
    assert store.data == {"autoUpdateOnLaunch": False}
    assert autostart.log == []


def test_set_is_optimistic_when_flush_fails():
    store, autostart = FakeStore(), FakeAutostart()
    store.fail_flush = SettingsError("read-only")
    adapter = SettingsAdapter(store, autostart)

    settings = asyncio.run(adapter.set("launch_at_login", True))

    assert settings.launch_at_login
    assert autostart.enabled


def test_set_is_optimistic_when_registration_fails():
    autostart = FakeAutostart()
    autostart.fail = OSError("denied")
    adapter = SettingsAdapter(FakeStore(), autostart)

    assert asyncio.run(adapter.set("launch_at_login", True)).launch_at_login
    assert adapter.settings.launch_at_login


def test_set_rejects_unknown_setting():
    adapter = SettingsAdapter(FakeStore(), FakeAutostart())
    with pytest.raises(ValueError):
        asyncio.run(adapter.set("dark_mode", True))
