from __future__ import annotations

import pathlib
from typing import List, Optional, Tuple

import pytest

from battery_source import BatterySample
from config_manager import ConfigManager
from monitor import BatteryGuard
from wake_lock import WakeLockManager, WakeLockUnavailable


class FakeNotifier:
    """Records deliveries instead of calling Telegram"""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: List[Tuple[str, str, str]] = []

    def deliver(self, token: str, chat_id: str, text: str) -> bool:
        self.calls.append((token, chat_id, text))
        if not token or not chat_id:
            return False
        return self.result


class FakeHandle:
    def __init__(self, fail_release: bool = False) -> None:
        self.released = False
        self.fail_release = fail_release

    def release(self) -> None:
        self.released = True
        if self.fail_release:
            raise OSError("release failed")


class FakeWakeLockProvider:
    def __init__(self, available: bool = True, fail_release: bool = False) -> None:
        self.available = available
        self.fail_release = fail_release
        self.handles: List[FakeHandle] = []

    def acquire(self) -> FakeHandle:
        if not self.available:
            raise WakeLockUnavailable("denied")
        handle = FakeHandle(self.fail_release)
        self.handles.append(handle)
        return handle


class FakeBatterySource:
    """Returns queued samples, then None"""

    def __init__(self, samples: Optional[List[Optional[BatterySample]]] = None) -> None:
        self.samples = list(samples or [])

    def read(self) -> Optional[BatterySample]:
        if not self.samples:
            return None
        return self.samples.pop(0)


def discharging(percent: int) -> BatterySample:
    return BatterySample(level=percent / 100, charging=False)


def charging(percent: int) -> BatterySample:
    return BatterySample(level=percent / 100, charging=True)


@pytest.fixture()
def config_path(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "battery_guard_config.json"


@pytest.fixture()
def config_manager(config_path: pathlib.Path) -> ConfigManager:
    manager = ConfigManager(str(config_path))
    manager.update(
        device_label="Pixel",
        telegram_token="123:abc",
        telegram_chat_id="42",
        start_threshold=25,
        step=5,
        floor_threshold=1,
    )
    return manager


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def wake_provider() -> FakeWakeLockProvider:
    return FakeWakeLockProvider()


@pytest.fixture()
def guard(config_manager: ConfigManager, notifier: FakeNotifier, wake_provider: FakeWakeLockProvider) -> BatteryGuard:
    return BatteryGuard(config_manager, notifier=notifier, wake_lock=WakeLockManager(wake_provider))
