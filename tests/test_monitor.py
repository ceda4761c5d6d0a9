from __future__ import annotations

import threading

from conftest import FakeBatterySource, FakeNotifier, FakeWakeLockProvider, charging, discharging

from battery_source import BatteryFeed
from config_manager import ConfigManager
from event_log import DeliveryStatus, EventLog
from monitor import BatteryGuard, MonitorState
from wake_lock import WakeLockManager


def _run(guard: BatteryGuard, *samples):
    return [guard.handle_sample(s) for s in samples]


def test_starts_in_standby(guard: BatteryGuard) -> None:
    assert guard.state is MonitorState.STANDBY
    assert not guard.wake_lock.held


def test_standby_ignores_samples(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    _run(guard, discharging(10), discharging(5))

    assert notifier.calls == []
    assert len(guard.event_log) == 0


def test_discharge_sequence_alerts(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.start()

    results = _run(guard, discharging(30), discharging(28), discharging(24), discharging(19))

    assert results[0] is None and results[1] is None
    assert [e.message for e in guard.event_log.snapshot()] == [
        "Threshold 20% reached.",
        "Threshold 25% reached.",
    ]
    assert [e.level_percent for e in guard.event_log.snapshot()] == [19, 24]
    assert len(notifier.calls) == 2
    token, chat_id, text = notifier.calls[0]
    assert (token, chat_id) == ("123:abc", "42")
    assert "Pixel" in text and "24%" in text and "25%" in text


def test_one_alert_per_sample(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.start()

    _run(guard, discharging(30), discharging(15))

    assert len(notifier.calls) == 1
    assert guard.status()["fired_thresholds"] == [25]


def test_charging_resets_fired_thresholds(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.start()

    _run(guard, discharging(24), charging(30), discharging(24))

    assert len(notifier.calls) == 2


def test_rearm_resets_fired_thresholds(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.start()
    guard.handle_sample(discharging(24))

    guard.stop()
    guard.start()
    guard.handle_sample(discharging(24))

    assert len(notifier.calls) == 2


def test_failed_delivery_logged_and_not_repeated(config_manager: ConfigManager) -> None:
    notifier = FakeNotifier(result=False)
    guard = BatteryGuard(config_manager, notifier=notifier, wake_lock=WakeLockManager(FakeWakeLockProvider()))
    guard.start()

    _run(guard, discharging(24), discharging(23), discharging(22))

    entries = guard.event_log.snapshot()
    assert len(entries) == 1
    assert entries[0].status is DeliveryStatus.FAILED
    assert len(notifier.calls) == 1


def test_missing_credentials_logged_as_failed(guard: BatteryGuard) -> None:
    guard.update_settings(telegram_token="")
    guard.start()

    entry = guard.handle_sample(discharging(24))

    assert entry is not None
    assert entry.status is DeliveryStatus.FAILED


def test_wake_lock_follows_state(guard: BatteryGuard, wake_provider: FakeWakeLockProvider) -> None:
    guard.start()
    assert guard.wake_lock.held

    guard.stop()
    assert not guard.wake_lock.held
    assert wake_provider.handles[0].released


def test_wake_lock_denied_does_not_block_alerts(config_manager: ConfigManager) -> None:
    notifier = FakeNotifier()
    guard = BatteryGuard(
        config_manager, notifier=notifier, wake_lock=WakeLockManager(FakeWakeLockProvider(available=False))
    )

    guard.start()
    entry = guard.handle_sample(discharging(24))

    assert guard.armed
    assert not guard.wake_lock.held
    assert guard.status()["wake_lock"]["error"] == "denied"
    assert entry is not None and entry.status is DeliveryStatus.SENT


def test_toggle(guard: BatteryGuard) -> None:
    assert guard.toggle() is MonitorState.ARMED
    assert guard.toggle() is MonitorState.STANDBY


def test_log_is_capped(config_manager: ConfigManager) -> None:
    guard = BatteryGuard(
        config_manager,
        notifier=FakeNotifier(),
        wake_lock=WakeLockManager(FakeWakeLockProvider()),
        event_log=EventLog(capacity=3),
    )
    guard.start()

    for _ in range(5):
        _run(guard, discharging(24), charging(50))

    assert len(guard.event_log) == 3


def test_test_alert_bypasses_detector(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    assert guard.send_test_alert() is True

    assert len(notifier.calls) == 1
    assert "Connection established" in notifier.calls[0][2]
    assert len(guard.event_log) == 0


def test_test_alert_without_credentials(guard: BatteryGuard) -> None:
    guard.update_settings(telegram_chat_id="")

    assert guard.send_test_alert() is False


def test_update_settings_rebuilds_thresholds(guard: BatteryGuard) -> None:
    guard.update_settings(start_threshold=50, step=25, floor_threshold=10)

    assert guard.thresholds == [50, 25, 10]


def test_stop_during_delivery_still_logs(config_manager: ConfigManager) -> None:
    started = threading.Event()
    proceed = threading.Event()

    class _SlowNotifier(FakeNotifier):
        def deliver(self, token: str, chat_id: str, text: str) -> bool:
            started.set()
            proceed.wait(timeout=5)
            return super().deliver(token, chat_id, text)

    guard = BatteryGuard(config_manager, notifier=_SlowNotifier(), wake_lock=WakeLockManager(FakeWakeLockProvider()))
    guard.start()

    worker = threading.Thread(target=guard.handle_sample, args=(discharging(24),))
    worker.start()
    assert started.wait(timeout=5)

    guard.stop()
    assert guard.state is MonitorState.STANDBY
    proceed.set()
    worker.join(timeout=5)

    assert len(guard.event_log) == 1


def test_attach_to_feed(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    feed = BatteryFeed(FakeBatterySource([discharging(30), discharging(24), discharging(24)]))
    guard.attach(feed)
    guard.start()

    for _ in range(3):
        feed.poll_once()

    assert len(notifier.calls) == 1
    assert guard.status()["battery"]["percentage"] == 24


def test_close_releases_wake_lock_and_detaches(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    feed = BatteryFeed(FakeBatterySource([discharging(24)]))
    guard.attach(feed)
    guard.start()

    guard.close()
    feed.poll_once()

    assert not guard.wake_lock.held
    assert notifier.calls == []


def test_listeners_receive_events(guard: BatteryGuard) -> None:
    events = []
    guard.add_listener(lambda event, payload: events.append(event))

    guard.start()
    guard.handle_sample(discharging(24))

    assert events == ["state_change", "battery_update", "alert"]


def test_listener_errors_do_not_break_processing(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    def _broken(event, payload):
        raise RuntimeError("boom")

    guard.add_listener(_broken)
    guard.start()

    assert guard.handle_sample(discharging(24)) is not None
    assert len(notifier.calls) == 1


def test_arming_below_threshold_alerts_on_current_reading(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    feed = BatteryFeed(FakeBatterySource([discharging(20), discharging(20), discharging(20)]))
    guard.attach(feed)
    feed.poll_once()
    assert notifier.calls == []

    guard.start()
    feed.poll_once()
    feed.poll_once()

    assert len(notifier.calls) == 1
    assert [e.message for e in guard.event_log.snapshot()] == ["Threshold 25% reached."]


def test_arming_while_charging_sends_nothing(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.handle_sample(charging(20))

    guard.start()

    assert notifier.calls == []


def test_update_settings_forgets_removed_thresholds(guard: BatteryGuard, notifier: FakeNotifier) -> None:
    guard.start()
    _run(guard, discharging(24), discharging(19), discharging(14), discharging(9))
    assert len(guard.detector.fired) == 4

    guard.update_settings(step=24)

    assert guard.thresholds == [25, 1]
    assert len(guard.detector.fired) <= len(guard.thresholds)
    assert guard.detector.fired.has_fired(25)

    # surviving thresholds still do not fire twice
    guard.handle_sample(discharging(8))
    assert len(notifier.calls) == 4


def test_toggle_notifies_listeners_without_state_lock(guard: BatteryGuard) -> None:
    held = []
    guard.add_listener(lambda event, payload: held.append(guard._state_lock._is_owned()))

    guard.toggle()
    guard.toggle()

    assert held == [False, False]
