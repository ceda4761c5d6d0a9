"""
Keep-awake handling for Battery Guard
Holds a system sleep inhibitor while monitoring is armed
"""
import ctypes
import logging
import shutil
import subprocess
import sys
from typing import List, Optional

logger = logging.getLogger(__name__)

ES_CONTINUOUS = 0x80000000
ES_SYSTEM_REQUIRED = 0x00000001
ES_DISPLAY_REQUIRED = 0x00000002


class WakeLockUnavailable(RuntimeError):
    """Raised when the keep-awake resource cannot be acquired"""


class ProcessWakeLockHandle:
    """Inhibitor kept alive by a child process (systemd-inhibit, caffeinate)"""

    def __init__(self, process: subprocess.Popen):
        self.process = process

    def release(self):
        if self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait(timeout=5)


class ExecutionStateHandle:
    """Windows thread execution state request"""

    def __init__(self, kernel32):
        self.kernel32 = kernel32

    def release(self):
        self.kernel32.SetThreadExecutionState(ES_CONTINUOUS)


class SystemWakeLock:
    """Platform keep-awake provider"""

    def __init__(self, reason: str = 'Battery Guard is monitoring the battery'):
        self.reason = reason

    @staticmethod
    def is_windows() -> bool:
        return sys.platform == 'win32'

    @staticmethod
    def is_macos() -> bool:
        return sys.platform == 'darwin'

    def _inhibitor_command(self) -> List[str]:
        if self.is_macos():
            return ['caffeinate', '-d', '-i']
        return [
            'systemd-inhibit',
            '--what=idle:sleep',
            '--who=battery-guard',
            f'--why={self.reason}',
            '--mode=block',
            'sleep', 'infinity'
        ]

    def acquire(self):
        """Acquire the keep-awake resource, raising WakeLockUnavailable on failure"""
        if self.is_windows():
            return self._acquire_execution_state()

        command = self._inhibitor_command()
        if shutil.which(command[0]) is None:
            raise WakeLockUnavailable(f"{command[0]} not found")

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except OSError as e:
            raise WakeLockUnavailable(f"Could not start {command[0]}: {e}") from e

        # Inhibitor exits immediately when denied (no session bus, polkit)
        try:
            returncode = process.wait(timeout=0.2)
        except subprocess.TimeoutExpired:
            return ProcessWakeLockHandle(process)
        raise WakeLockUnavailable(f"{command[0]} exited with code {returncode}")

    def _acquire_execution_state(self):
        try:
            kernel32 = ctypes.windll.kernel32
        except AttributeError as e:
            raise WakeLockUnavailable("kernel32 not available") from e

        flags = ES_CONTINUOUS | ES_SYSTEM_REQUIRED | ES_DISPLAY_REQUIRED
        if not kernel32.SetThreadExecutionState(flags):
            raise WakeLockUnavailable("SetThreadExecutionState was denied")
        return ExecutionStateHandle(kernel32)


class DisabledWakeLock:
    """Provider used when keep-awake is turned off"""

    def acquire(self):
        raise WakeLockUnavailable("Keep-awake disabled")


class WakeLockManager:
    """Acquires and releases the keep-awake resource with the armed state"""

    def __init__(self, provider=None):
        self.provider = provider if provider is not None else SystemWakeLock()
        self._handle = None
        self.last_error: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        """
        Acquire the resource if not already held.

        Failure leaves the manager released and is only recorded; the
        device may sleep but monitoring carries on.
        """
        if self._handle is not None:
            return True

        try:
            handle = self.provider.acquire()
        except (WakeLockUnavailable, OSError) as e:
            self.last_error = str(e)
            logger.warning("Keep-awake unavailable, the device may sleep: %s", e)
            return False

        self._handle = handle
        self.last_error = None
        logger.info("Keep-awake acquired")
        return True

    def release(self):
        """Release the resource; failures are ignored"""
        handle, self._handle = self._handle, None
        if handle is None:
            return

        try:
            handle.release()
        except Exception as e:
            logger.debug("Ignoring keep-awake release failure: %s", e)
        else:
            logger.info("Keep-awake released")
