from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .connection import Connection


class Registry:
    """
    Username -> Connection directory shared by every session.

    All mutation goes through two atomic operations: register_if_absent and
    unregister_if_owner. The internal lock is only held for dict access;
    callbacks passed to for_each_except run after it is released.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("chatrelay.registry")
        self._lock = threading.Lock()
        self._entries: dict[str, Connection] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def register_if_absent(self, username: str, connection: Connection) -> bool:
        with self._lock:
            if username in self._entries:
                return False
            self._entries[username] = connection
        self.log.debug("Registered user=%r peer=%s", username, connection.peer)
        return True

    def unregister_if_owner(self, username: str, connection: Connection) -> bool:
        """Remove username only if it still maps to this exact connection."""
        with self._lock:
            if self._entries.get(username) is not connection:
                return False
            del self._entries[username]
        self.log.debug("Unregistered user=%r peer=%s", username, connection.peer)
        return True

    def lookup(self, username: str) -> Connection | None:
        with self._lock:
            return self._entries.get(username)

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._entries)

    def connections(self) -> list[Connection]:
        with self._lock:
            return list(self._entries.values())

    def for_each_except(
        self, username: str | None, fn: Callable[[Connection], object]
    ) -> int:
        """
        Apply fn to every registered connection not owned by username.

        Best-effort: the recipient set is a snapshot taken at call time.
        Returns the number of connections visited.
        """
        with self._lock:
            targets = [c for u, c in self._entries.items() if u != username]

        for conn in targets:
            fn(conn)
        return len(targets)
