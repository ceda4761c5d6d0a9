"""
Battery Guard controller
Owns the monitoring state, the fired-threshold set, the alert log and the
keep-awake resource, and turns battery samples into Telegram alerts
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from config_manager import ConfigManager, MonitorConfig
from detector import CrossingDetector
from event_log import EventLog, LogEntry
from notifications import NotificationTemplates, TelegramNotifier
from thresholds import build_thresholds
from wake_lock import WakeLockManager

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    STANDBY = 'standby'
    ARMED = 'armed'


class BatteryGuard:
    """Monitoring state machine"""

    def __init__(self, config_manager: ConfigManager, notifier: TelegramNotifier = None,
                 wake_lock: WakeLockManager = None, event_log: EventLog = None):
        self.config_manager = config_manager
        self.notifier = notifier or TelegramNotifier()
        self.wake_lock = wake_lock or WakeLockManager()
        self.event_log = event_log or EventLog()
        self.detector = CrossingDetector()

        self.state = MonitorState.STANDBY
        self.last_sample = None

        # State lock is never held across a delivery; the sample lock is
        self._state_lock = threading.RLock()
        self._sample_lock = threading.Lock()

        self._thresholds = self._compute_thresholds()
        self._listeners: List[Callable[[str, Dict[str, Any]], None]] = []
        self._feed = None
        self._feed_token = None

    @property
    def config(self) -> MonitorConfig:
        return self.config_manager.config

    @property
    def armed(self) -> bool:
        return self.state == MonitorState.ARMED

    @property
    def thresholds(self) -> List[int]:
        with self._state_lock:
            return list(self._thresholds)

    def _compute_thresholds(self) -> List[int]:
        config = self.config
        return build_thresholds(config.start_threshold, config.step, config.floor_threshold)

    # Monitoring state
    def start(self):
        """
        Arm monitoring and acquire the keep-awake resource.

        The latest known reading is evaluated right away, so arming below
        a threshold alerts without waiting for the level to change.
        """
        with self._state_lock:
            if self.armed:
                return
            self.state = MonitorState.ARMED
            self.wake_lock.acquire()
            sample = self.last_sample

        logger.info("Monitoring armed, thresholds: %s", self._thresholds)
        self._notify_listeners('state_change', self.status())

        if sample is not None:
            self.handle_sample(sample)

    def stop(self):
        """Return to standby, forget fired thresholds, release keep-awake"""
        with self._state_lock:
            if not self.armed:
                return
            self.state = MonitorState.STANDBY
            self.detector.reset()
            self.wake_lock.release()

        logger.info("Monitoring stopped")
        self._notify_listeners('state_change', self.status())

    def toggle(self) -> MonitorState:
        with self._state_lock:
            arm = not self.armed

        if arm:
            self.start()
        else:
            self.stop()
        return self.state

    # Samples
    def handle_sample(self, sample) -> Optional[LogEntry]:
        """
        Process one battery sample.

        At most one alert is sent per sample. The threshold is marked as
        fired before delivery, and every delivery attempt is logged, even
        when monitoring is stopped while it is in flight.
        """
        with self._sample_lock:
            with self._state_lock:
                self.last_sample = sample
                config = self.config
                crossing = self.detector.evaluate(sample, self._thresholds, self.armed)

            self._notify_listeners('battery_update', sample.to_dict())

            if crossing is None:
                return None

            logger.info("Threshold %d%% reached at %d%%", crossing.threshold, crossing.percentage)

            text = NotificationTemplates.threshold_alert(
                config.device_label, crossing.percentage, crossing.threshold
            )
            success = self.notifier.deliver(config.telegram_token, config.telegram_chat_id, text)

            entry = self.event_log.append(LogEntry.for_delivery(
                level_percent=crossing.percentage,
                message=NotificationTemplates.threshold_log_message(crossing.threshold),
                success=success
            ))

        self._notify_listeners('alert', entry.to_dict())
        return entry

    def send_test_alert(self) -> bool:
        """Send the connection test message directly, bypassing detection"""
        config = self.config
        text = NotificationTemplates.connection_test(config.device_label)
        success = self.notifier.deliver(config.telegram_token, config.telegram_chat_id, text)
        logger.info("Test alert %s", 'sent' if success else 'failed')
        return success

    # Settings
    def update_settings(self, **changes) -> MonitorConfig:
        """Persist new settings and rebuild the threshold set"""
        with self._state_lock:
            config = self.config_manager.update(**changes)
            self._thresholds = self._compute_thresholds()
            self.detector.fired.retain(self._thresholds)

        for issue in self.config_manager.validate():
            logger.warning("Configuration issue: %s", issue)
        return config

    # Feed wiring
    def attach(self, feed):
        """Subscribe to a battery feed"""
        if self._feed is not None:
            raise RuntimeError("Already attached to a battery feed")
        self._feed = feed
        self._feed_token = feed.subscribe(self.handle_sample)

    def detach(self):
        if self._feed is not None:
            self._feed.unsubscribe(self._feed_token)
        self._feed = None
        self._feed_token = None

    def close(self):
        """Tear down: detach from the feed and release keep-awake"""
        self.detach()
        with self._state_lock:
            self.state = MonitorState.STANDBY
            self.detector.reset()
            self.wake_lock.release()

    # Listeners (dashboard push)
    def add_listener(self, callback: Callable[[str, Dict[str, Any]], None]):
        self._listeners.append(callback)

    def _notify_listeners(self, event: str, payload: Dict[str, Any]):
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception:
                logger.exception("Listener failed for %s", event)

    def status(self) -> Dict[str, Any]:
        with self._state_lock:
            sample = self.last_sample
            return {
                'state': self.state.value,
                'armed': self.armed,
                'thresholds': list(self._thresholds),
                'fired_thresholds': sorted(
                    (t for t in self._thresholds if self.detector.fired.has_fired(t)), reverse=True
                ),
                'wake_lock': {
                    'held': self.wake_lock.held,
                    'error': self.wake_lock.last_error
                },
                'battery': sample.to_dict() if sample is not None else None,
                'log_size': len(self.event_log),
                'log_capacity': self.event_log.capacity
            }
