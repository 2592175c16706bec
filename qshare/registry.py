"""
Peer registry — thread-safe mapping of display name to network address.

The discovery listener is the only writer; the send path and the front end
read.  Entries are last-write-wins and never expire.
"""

import threading


class PeerRegistry:
    """Guarded ``name -> address`` mapping populated by discovery."""

    def __init__(self):
        self._peers: dict[str, str] = {}
        self._lock = threading.Lock()

    def upsert(self, name: str, address: str) -> None:
        with self._lock:
            self._peers[name] = address

    def get(self, name: str) -> str | None:
        """Return the last address seen for *name*, or None if unknown."""
        with self._lock:
            return self._peers.get(name)

    def snapshot(self) -> list[tuple[str, str]]:
        """Return ``(name, address)`` pairs sorted by name."""
        with self._lock:
            return sorted(self._peers.items())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
