"""
Change stream - multicast publish/subscribe channel with replay of the last value.

New subscribers receive the most recent value immediately (if one has been
published or seeded), then every later publication.
"""
from typing import Callable, Dict, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


class Subscription:
    """Handle returned by ChangeStream.subscribe"""

    def __init__(self, stream: "ChangeStream", token: int):
        self._stream = stream
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop receiving values (safe to call more than once)"""
        if not self._active:
            return
        self._active = False
        self._stream._remove(self._token)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class ChangeStream(Generic[T]):
    """Unbounded multicast stream holding the latest value"""

    def __init__(self, name: str = "changes"):
        self.name = name
        self._subscribers: Dict[int, Callable[[T], None]] = {}
        self._next_token = 0
        self._value: Optional[T] = None
        self._has_value = False

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def has_value(self) -> bool:
        return self._has_value

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def seed(self, value: T) -> None:
        """Record a current value without notifying subscribers"""
        self._value = value
        self._has_value = True

    def publish(self, value: T) -> None:
        """Record the value and deliver it to every subscriber"""
        self.seed(value)
        for token, callback in list(self._subscribers.items()):
            if token not in self._subscribers:
                continue  # unsubscribed by an earlier callback
            self._deliver(callback, value)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback
        logger.debug(f"[CHANGE STREAM] {self.name}: subscriber {token} added ({len(self._subscribers)} total)")

        if self._has_value:
            self._deliver(callback, self._value)
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        if self._subscribers.pop(token, None) is not None:
            logger.debug(f"[CHANGE STREAM] {self.name}: subscriber {token} removed ({len(self._subscribers)} left)")

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error(f"[CHANGE STREAM] {self.name}: subscriber failed: {e}")
