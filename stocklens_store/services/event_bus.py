import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class Topic(enum.Enum):
    RECEIPTS_CHANGED = "receipts-changed"
    HISTORICAL_UPDATED = "historical-updated"
    USERS_CHANGED = "users-changed"
    SETTINGS_CHANGED = "settings-changed"


@dataclass(frozen=True)
class ReceiptsChanged:
    receipt_id: Optional[int] = None
    user_id: Optional[str] = None
    action: Optional[str] = None  # created | updated | deleted | synced | cleared


@dataclass(frozen=True)
class HistoricalUpdated:
    symbol: str
    granularity: str


@dataclass(frozen=True)
class UsersChanged:
    uid: str
    action: str = "upserted"


@dataclass(frozen=True)
class SettingsChanged:
    user_id: str


PAYLOAD_TYPES = {
    Topic.RECEIPTS_CHANGED: ReceiptsChanged,
    Topic.HISTORICAL_UPDATED: HistoricalUpdated,
    Topic.USERS_CHANGED: UsersChanged,
    Topic.SETTINGS_CHANGED: SettingsChanged,
}

Handler = Callable[[Optional[object]], None]


class ChangeBus:
    """
    In-process publish/subscribe for change notifications.

    Handlers run synchronously, in subscription order, once per emit. A
    failing handler is logged and does not stop delivery to the rest.
    Nothing is persisted.
    """

    def __init__(self):
        self._handlers: Dict[Topic, List["_Entry"]] = {}

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        if not isinstance(topic, Topic):
            raise TypeError(f"Unknown topic: {topic!r}")
        # Wrap so the same function subscribed twice gets two entries.
        entry = _Entry(handler)
        self._handlers.setdefault(topic, []).append(entry)

        def unsubscribe() -> None:
            entries = self._handlers.get(topic)
            if not entries or entry not in entries:
                return
            entries.remove(entry)
            if not entries:
                self._handlers.pop(topic, None)

        return _Once(unsubscribe)

    def emit(self, topic: Topic, payload=None) -> None:
        expected = PAYLOAD_TYPES.get(topic)
        if expected is None:
            raise TypeError(f"Unknown topic: {topic!r}")
        if payload is not None and not isinstance(payload, expected):
            raise TypeError(f"{topic.value} expects {expected.__name__}, got {type(payload).__name__}")

        for entry in list(self._handlers.get(topic, ())):
            try:
                entry.handler(payload)
            except Exception:
                logger.exception("ChangeBus handler failed for %s", topic.value)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._handlers.get(topic, ()))

    def clear(self) -> None:
        self._handlers.clear()


class _Once:
    """Unsubscribe callable that only acts the first time it is called."""

    def __init__(self, fn: Callable[[], None]):
        self._fn = fn

    def __call__(self) -> None:
        fn, self._fn = self._fn, None
        if fn is not None:
            fn()


class _Entry:
    __slots__ = ("handler",)

    def __init__(self, handler: Handler):
        self.handler = handler
