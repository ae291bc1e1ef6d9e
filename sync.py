"""
Local view state fed by a live subscription.
"""

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from errors import SyncError
from repositories import Subscription


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveMirror(Generic[T]):
    """
    Consumes a Subscription on a daemon thread and keeps the last snapshot.

    A SyncError ends the mirror but keeps the last good value. set_local()
    installs an optimistic value that the next echo from the store replaces.
    """

    def __init__(self, subscription: Subscription[T], name: str = ""):
        self.name = name or subscription.name
        self._subscription = subscription
        self._cond = threading.Condition()
        self._value: Optional[T] = None
        self._loaded = False
        self.error: Optional[SyncError] = None
        self._thread = threading.Thread(target=self._run, name=f"mirror-{self.name}", daemon=True)

    def start(self) -> "LiveMirror[T]":
        self._thread.start()
        return self

    @property
    def value(self) -> Optional[T]:
        with self._cond:
            return self._value

    @property
    def loaded(self) -> bool:
        with self._cond:
            return self._loaded

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def set_local(self, value: T) -> None:
        self._publish(value)

    def wait_for(self, predicate: Callable[[T], bool], timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._loaded and predicate(self._value), timeout=timeout)

    def close(self, timeout: float = 5.0) -> None:
        self._subscription.close()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _publish(self, value: T) -> None:
        with self._cond:
            self._value = value
            self._loaded = True
            self._cond.notify_all()

    def _run(self) -> None:
        try:
            for snapshot in self._subscription:
                self._publish(snapshot)
        except SyncError as e:
            logger.error(f"Sync error on {self.name}, keeping last good state: {str(e)}")
            self.error = e
        finally:
            self._subscription.close()
            with self._cond:
                self._cond.notify_all()
