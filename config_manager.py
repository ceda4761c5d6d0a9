"""
Configuration manager for Battery Guard
Settings are the only state that survives a restart
"""
import dataclasses
import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Tuple

from thresholds import build_thresholds

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'BATTERY_GUARD_CONFIG'
BATTERY_SOURCES = ('auto', 'laptop', 'phone')

# Keys written by the browser version of the app
LEGACY_KEYS = {
    'phoneName': 'device_label',
    'telegramToken': 'telegram_token',
    'telegramChatId': 'telegram_chat_id',
    'initialThreshold': 'start_threshold',
    'interval': 'step',
    'finalThreshold': 'floor_threshold',
}


def default_config_path() -> str:
    return os.getenv(CONFIG_ENV_VAR) or os.path.join(os.path.dirname(__file__), 'battery_guard_config.json')


@dataclass
class MonitorConfig:
    """Monitoring settings"""
    device_label: str = 'Android Device'

    # Telegram transport
    telegram_token: str = ''
    telegram_chat_id: str = ''

    # Alert thresholds (percent)
    start_threshold: int = 25
    step: int = 5
    floor_threshold: int = 1

    # Sensor feed
    poll_interval_seconds: int = 30
    battery_source: str = 'auto'

    @property
    def credentials(self) -> Tuple[str, str]:
        return self.telegram_token, self.telegram_chat_id

    @property
    def thresholds(self) -> List[int]:
        return build_thresholds(self.start_threshold, self.step, self.floor_threshold)


def _coerce(field: dataclasses.Field, value: Any) -> Any:
    if field.type is int:
        if isinstance(value, bool):
            raise ValueError(f"{field.name} must be an integer")
        text = str(value).strip().rstrip('%')
        try:
            return int(text)
        except ValueError:
            raise ValueError(f"{field.name} must be an integer, got '{value}'") from None
    if value is None:
        return ''
    return str(value).strip()


class ConfigManager:
    """Loads and persists the monitoring configuration"""

    def __init__(self, config_path: str = None):
        if config_path is None:
            config_path = default_config_path()

        self.config_path = config_path
        self.config = MonitorConfig()

        self.load()

    def load(self):
        """Load configuration from file"""
        if not os.path.exists(self.config_path):
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error loading config %s, using defaults: %s", self.config_path, e)
            return

        if not isinstance(data, dict):
            logger.error("Config %s is not a JSON object, using defaults", self.config_path)
            return

        if any(key in data for key in LEGACY_KEYS):
            self._migrate_legacy_config(data)
            return

        known_fields = {f.name: f for f in dataclasses.fields(MonitorConfig)}
        values = {}
        for key, value in data.get('settings', {}).items():
            if key not in known_fields:
                continue
            try:
                values[key] = _coerce(known_fields[key], value)
            except ValueError as e:
                logger.warning("Ignoring invalid config value: %s", e)
        self.config = MonitorConfig(**values)

    def save(self):
        """Save configuration to file"""
        data = {
            'settings': asdict(self.config),
            'version': '1.0',
            'last_updated': datetime.now().isoformat()
        }

        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error("Error saving config %s: %s", self.config_path, e)

    def _migrate_legacy_config(self, old_data: Dict):
        """Migrate camelCase settings from the browser app"""
        known_fields = {f.name: f for f in dataclasses.fields(MonitorConfig)}
        values = {}
        for old_key, new_key in LEGACY_KEYS.items():
            if old_key not in old_data:
                continue
            try:
                values[new_key] = _coerce(known_fields[new_key], old_data[old_key])
            except ValueError as e:
                logger.warning("Ignoring invalid legacy value: %s", e)

        self.config = MonitorConfig(**values)
        self.save()
        logger.info("Migrated legacy configuration to new format")

    def update(self, **changes) -> MonitorConfig:
        """Update settings and persist them"""
        known_fields = {f.name: f for f in dataclasses.fields(MonitorConfig)}

        coerced = {}
        for key, value in changes.items():
            if key not in known_fields:
                raise ValueError(f"Unknown setting '{key}'")
            coerced[key] = _coerce(known_fields[key], value)

        if 'battery_source' in coerced and coerced['battery_source'] not in BATTERY_SOURCES:
            raise ValueError(f"battery_source must be one of {', '.join(BATTERY_SOURCES)}")

        self.config = dataclasses.replace(self.config, **coerced)
        self.save()
        return self.config

    def validate(self, config: MonitorConfig = None) -> List[str]:
        """Validate configuration and return list of issues"""
        config = config or self.config
        issues = []

        if config.step <= 0:
            issues.append("Step must be a positive number of percent")

        if config.floor_threshold > config.start_threshold:
            issues.append("Final threshold must not be above the initial threshold")

        for name in ('start_threshold', 'floor_threshold'):
            if not 0 <= getattr(config, name) <= 100:
                issues.append(f"{name} must be between 0 and 100")

        if not config.telegram_token or not config.telegram_chat_id:
            issues.append("Telegram bot token and chat id are required for alerts")

        if config.poll_interval_seconds < 1:
            issues.append("Poll interval must be at least 1 second")

        if config.battery_source not in BATTERY_SOURCES:
            issues.append(f"Battery source must be one of {', '.join(BATTERY_SOURCES)}")

        return issues

    def get_config_summary(self) -> Dict[str, Any]:
        """Get summary of current configuration"""
        config = self.config

        return {
            'device_label': config.device_label,
            'telegram_configured': bool(config.telegram_token and config.telegram_chat_id),
            'telegram_chat_id': config.telegram_chat_id,
            'start_threshold': config.start_threshold,
            'step': config.step,
            'floor_threshold': config.floor_threshold,
            'thresholds': config.thresholds,
            'poll_interval_seconds': config.poll_interval_seconds,
            'battery_source': config.battery_source
        }
