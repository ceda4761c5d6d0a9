"""
Logging setup for Battery Guard
Log lines carry the thread name since polling, the dashboard and the
console each run on their own thread
"""
import json
import logging
import sys

CONSOLE_FORMAT = '%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s'
TIME_FORMAT = '%H:%M:%S'

# Chatty at INFO: one line per dashboard request or Telegram connection
QUIET_LOGGERS = ('werkzeug', 'engineio', 'socketio', 'urllib3')


def configure_logging(level: str = 'INFO', json_format: bool = False) -> None:
    """Send log records to stdout, as text or JSON lines"""
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        level_value = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(CONSOLE_FORMAT, TIME_FORMAT))
    logging.basicConfig(level=level_value, handlers=[handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level_value, logging.WARNING))


class JsonFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        entry = {
            'time': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)
