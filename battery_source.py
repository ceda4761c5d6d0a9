"""
Battery sensor feed for Battery Guard
Reads laptop battery via psutil and phone battery via ADB, and pushes
samples to subscribers whenever the level or charging state changes
"""
import itertools
import logging
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

import psutil

from detector import level_to_percent

logger = logging.getLogger(__name__)

# dumpsys battery status codes: 1=Unknown, 2=Charging, 3=Discharging, 4=Not charging, 5=Full
ADB_STATUS_CHARGING = 2
ADB_TIMEOUT_SECONDS = 5


@dataclass(frozen=True)
class BatterySample:
    """Point-in-time battery observation"""
    level: float
    charging: bool
    device: str = 'laptop'
    device_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not 0.0 <= self.level <= 1.0:
            raise ValueError(f"Battery level must be within [0, 1], got {self.level}")

    @property
    def percentage(self) -> int:
        return level_to_percent(self.level)

    def to_dict(self) -> Dict:
        return {
            'level': self.level,
            'percentage': self.percentage,
            'charging': self.charging,
            'device': self.device,
            'device_id': self.device_id,
            'timestamp': self.timestamp.isoformat()
        }


def _clamp_level(value: float) -> float:
    return max(0.0, min(1.0, value))


class LaptopBatterySource:
    """Local battery through psutil"""

    device = 'laptop'

    def read(self) -> Optional[BatterySample]:
        batt = psutil.sensors_battery()
        if batt is None:
            return None
        return BatterySample(
            level=_clamp_level(float(batt.percent) / 100.0),
            charging=bool(batt.power_plugged),
            device=self.device
        )


def parse_dumpsys_battery(output: str) -> Dict:
    """
    Parse `adb shell dumpsys battery` output.

    Returns a dict with any of: level, scale, status, powered, voltage,
    temperature, technology.
    """
    info = {}
    powered = False

    for line in output.splitlines():
        line = line.strip()
        if ':' not in line:
            continue
        key, _, value = line.partition(':')
        key = key.strip()
        value = value.strip()

        try:
            if key == 'level':
                info['level'] = int(value)
            elif key == 'scale':
                info['scale'] = int(value)
            elif key == 'status':
                info['status'] = int(value)
            elif key == 'voltage':
                info['voltage'] = int(value)  # mV
            elif key == 'temperature':
                info['temperature'] = int(value)  # 0.1°C
            elif key == 'technology':
                info['technology'] = value
            elif key in ('AC powered', 'USB powered', 'Wireless powered', 'Dock powered'):
                powered = powered or value.lower() == 'true'
        except ValueError:
            logger.debug("Skipping unparsable dumpsys line: %s", line)

    info['powered'] = powered
    return info


class PhoneBatterySource:
    """Android phone battery through ADB"""

    device = 'phone'

    def __init__(self, serial: str = None):
        self.serial = serial
        self._adb_warned = False

    def _adb(self, *args) -> Optional[str]:
        cmd = ['adb']
        if self.serial:
            cmd += ['-s', self.serial]
        cmd += list(args)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=ADB_TIMEOUT_SECONDS)
        except FileNotFoundError:
            if not self._adb_warned:
                logger.warning("ADB not found. Phone monitoring disabled. Install Android SDK Platform Tools.")
                self._adb_warned = True
            return None
        except subprocess.TimeoutExpired:
            logger.debug("ADB command timed out: %s", ' '.join(cmd))
            return None

        if result.returncode != 0:
            return None
        return result.stdout

    def connected_device(self) -> Optional[str]:
        """Serial of the first attached device, if any"""
        output = self._adb('devices')
        if not output:
            return None

        for line in output.strip().split('\n')[1:]:
            line = line.strip()
            if line and '\tdevice' in line:
                device_id = line.split('\t')[0]
                if self.serial is None or device_id == self.serial:
                    return device_id
        return None

    def read(self) -> Optional[BatterySample]:
        device_id = self.connected_device()
        if device_id is None:
            return None

        output = self._adb('shell', 'dumpsys', 'battery')
        if not output:
            return None

        info = parse_dumpsys_battery(output)
        if 'level' not in info:
            return None

        scale = info.get('scale') or 100
        # Full while plugged in still counts as charging
        charging = info.get('status') == ADB_STATUS_CHARGING or info['powered']

        return BatterySample(
            level=_clamp_level(info['level'] / scale),
            charging=charging,
            device=self.device,
            device_id=device_id
        )


class AutoBatterySource:
    """Phone when one is attached over ADB, laptop battery otherwise"""

    def __init__(self, phone: PhoneBatterySource = None, laptop: LaptopBatterySource = None):
        self.phone = phone or PhoneBatterySource()
        self.laptop = laptop or LaptopBatterySource()

    def read(self) -> Optional[BatterySample]:
        sample = self.phone.read()
        if sample is not None:
            return sample
        return self.laptop.read()


def create_source(kind: str):
    """Build a battery source by name: 'auto', 'laptop' or 'phone'"""
    if kind == 'laptop':
        return LaptopBatterySource()
    if kind == 'phone':
        return PhoneBatterySource()
    if kind == 'auto':
        return AutoBatterySource()
    raise ValueError(f"Unknown battery source '{kind}'")


class BatteryFeed:
    """Polls a battery source and pushes changed samples to subscribers"""

    def __init__(self, source, poll_interval_seconds: float = 30):
        self.source = source
        self.poll_interval_seconds = poll_interval_seconds
        self._subscribers: Dict[int, Callable] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self._last_sample: Optional[BatterySample] = None
        self._unavailable = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, callback: Callable[[BatterySample], None]) -> int:
        """Register a sample callback, returns a token for unsubscribe()"""
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int):
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def last_sample(self) -> Optional[BatterySample]:
        return self._last_sample

    def poll_once(self) -> Optional[BatterySample]:
        """
        Read the source once and push the sample if it is the first one or
        the level or charging state changed.
        """
        try:
            sample = self.source.read()
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("Battery read failed: %s", e)
            sample = None

        if sample is None:
            if not self._unavailable:
                logger.warning("Battery info not available on this system")
                self._unavailable = True
            return None

        if self._unavailable:
            logger.info("Battery info available again")
            self._unavailable = False

        previous = self._last_sample
        self._last_sample = sample

        if previous is not None:
            level_changed = sample.level != previous.level
            charging_changed = sample.charging != previous.charging
            if not (level_changed or charging_changed):
                return sample
            if charging_changed:
                logger.debug("Charging changed: %s", sample.charging)
            if level_changed:
                logger.debug("Level changed: %d%%", sample.percentage)

        self._dispatch(sample)
        return sample

    def _dispatch(self, sample: BatterySample):
        with self._lock:
            callbacks = list(self._subscribers.values())

        for callback in callbacks:
            try:
                callback(sample)
            except Exception:
                logger.exception("Battery sample subscriber failed")

    def start(self):
        """Start polling in a background thread"""
        if self._thread and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name='battery-feed', daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)

    def _poll_loop(self):
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(self.poll_interval_seconds)
