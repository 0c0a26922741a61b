"""
careermentor/features/entitlements/notifications.py
In-process pubsub for entitlement record changes.

The store publishes after every committed write; readers that cache a
snapshot (the credit gate) subscribe and drop their copy when notified.
"""

import logging
import threading
from typing import Callable, Dict, Optional

from careermentor.models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

Listener = Callable[[str, Optional[EntitlementRecord]], None]


class ProfileChangeHub:
    """Fan-out of (user_id, new record) to registered listeners."""

    def __init__(self):
        self._listeners: Dict[int, Listener] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> int:
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._listeners[token] = listener
        logger.debug(f"[profiles] listener {token} subscribed")
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    def publish(self, user_id: str, record: Optional[EntitlementRecord] = None) -> None:
        with self._lock:
            listeners = list(self._listeners.items())
        for token, listener in listeners:
            try:
                listener(user_id, record)
            except Exception:
                # The write is already committed; one bad listener must not hide it from the rest
                logger.exception(f"[profiles] listener {token} failed for user {user_id}")

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


hub = ProfileChangeHub()


def subscribe(listener: Listener) -> int:
    return hub.subscribe(listener)


def unsubscribe(token: int) -> None:
    hub.unsubscribe(token)


def publish(user_id: str, record: Optional[EntitlementRecord] = None) -> None:
    hub.publish(user_id, record)
