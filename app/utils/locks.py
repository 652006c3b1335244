import threading
from typing import Optional
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)


class OperationInProgressError(RuntimeError):
    """Raised when an operation is requested while another one holds the guard."""

    def __init__(self, requested: str, current: Optional[str]):
        self.requested = requested
        self.current = current
        super().__init__(
            f"Cannot start '{requested}' while '{current or 'another operation'}' is still in progress"
        )


class OperationGuard:
    """
    Single-slot guard for one in-flight operation.

    Unlike a plain "is processing" flag, acquisition is atomic and a second
    caller is rejected immediately instead of waiting or racing.
    """

    def __init__(self, name: str = "operation"):
        self._name = name
        self._lock = threading.Lock()
        self._current: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def current(self) -> Optional[str]:
        return self._current

    @contextmanager
    def hold(self, operation: str):
        """Context manager that owns the slot for ``operation`` or raises."""
        if not self._lock.acquire(blocking=False):
            logger.warning(
                "Rejected '%s' on %s: '%s' is in flight", operation, self._name, self._current
            )
            raise OperationInProgressError(operation, self._current)
        self._current = operation
        logger.debug("Acquired %s for '%s'", self._name, operation)
        try:
            yield
        finally:
            self._current = None
            self._lock.release()
            logger.debug("Released %s after '%s'", self._name, operation)
