"""
In-memory alert log for Battery Guard
Newest entries first, capped at a fixed length
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

LOG_CAPACITY = 50


class DeliveryStatus(str, Enum):
    SENT = 'sent'
    FAILED = 'failed'


@dataclass(frozen=True)
class LogEntry:
    """One alert attempt"""
    level_percent: int
    message: str
    status: DeliveryStatus
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def for_delivery(cls, level_percent: int, message: str, success: bool) -> 'LogEntry':
        status = DeliveryStatus.SENT if success else DeliveryStatus.FAILED
        return cls(level_percent=level_percent, message=message, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'level_percent': self.level_percent,
            'message': self.message,
            'status': self.status.value
        }

    def __repr__(self):
        return f"<LogEntry({self.level_percent}%, {self.status.value}, {self.timestamp})>"


class EventLog:
    """Fixed-capacity log of alert attempts"""

    def __init__(self, capacity: int = LOG_CAPACITY):
        if capacity < 1:
            raise ValueError("Log capacity must be at least 1")
        self.capacity = capacity
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> LogEntry:
        """Insert at the head, dropping the oldest entries past capacity"""
        with self._lock:
            self._entries.insert(0, entry)
            del self._entries[self.capacity:]
        return entry

    def snapshot(self) -> List[LogEntry]:
        """Copy of the log, newest first"""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
