"""Background refresh loop for the credentials manager."""

import threading
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from .manager import CredentialsManager

logger = structlog.get_logger(__name__)


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class Refresher:
    """Calls ``manager.refresh_credentials()`` every ``interval`` seconds on a daemon thread.

    A failed tick is logged and remembered in ``last_error``; the next tick simply
    tries again. ``stop()`` wakes the thread immediately.
    """

    def __init__(self, manager: "CredentialsManager", interval: float = 10):
        self.manager = manager
        self.interval = interval
        self.state = RefreshState.IDLE
        self.last_error: Optional[Exception] = None
        self.consecutive_failures = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="credentials-refresher", daemon=True)
        self._thread.start()
        logger.debug("Credentials refresher started", interval=self.interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        logger.debug("Credentials refresher stopped")

    def run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def tick(self) -> bool:
        """Run one refresh decision. Returns True if the active role was re-assumed."""
        self.state = RefreshState.REFRESHING
        try:
            refreshed = self.manager.refresh_credentials()
        except Exception as e:
            self.last_error = e
            self.consecutive_failures += 1
            logger.warning(
                "Credentials refresh failed, retrying on next tick",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self.consecutive_failures,
            )
            return False
        finally:
            self.state = RefreshState.IDLE

        self.last_error = None
        self.consecutive_failures = 0
        return refreshed
