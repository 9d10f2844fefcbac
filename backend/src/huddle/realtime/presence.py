"""Process-local registry of connected users."""

from __future__ import annotations

from typing import Dict


class PresenceRegistry:
    """Map each online user to the id of its live connection.

    Mutated only from the event loop by connect/disconnect handling, so no
    locking is required.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, str] = {}

    def register(self, user_id: str, connection_id: str) -> str | None:
        """Record the connection for *user_id*, returning the replaced one if any."""

        previous = self._connections.get(user_id)
        self._connections[user_id] = connection_id
        return previous

    def unregister(self, user_id: str) -> str | None:
        return self._connections.pop(user_id, None)

    def connection_for(self, user_id: str) -> str | None:
        return self._connections.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._connections

    def online_user_ids(self) -> list[str]:
        return sorted(self._connections)

    def clear(self) -> None:
        self._connections.clear()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._connections
