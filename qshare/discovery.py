"""
Peer discovery via UDP broadcast.

Each peer periodically broadcasts an announcement on the LAN.  All peers
listen on the same UDP port and record the sender's address under the
announced name in a shared PeerRegistry.

Announcement payload (UTF-8 string, at most MAX_ANNOUNCEMENT_SIZE bytes):
    <display name>

There are no sequence numbers or liveness semantics; a lost datagram is
simply made up for by the next one.
"""

import logging
import socket
import threading

import psutil

from .config import (
    BROADCAST_INTERVAL,
    BROADCAST_PORT,
    DEVICE_NAME,
    MAX_ANNOUNCEMENT_SIZE,
)
from .registry import PeerRegistry

logger = logging.getLogger(__name__)

# How long the listener blocks in recvfrom() before re-checking for stop().
LISTEN_POLL_INTERVAL = 1.0

LIMITED_BROADCAST = "255.255.255.255"


def get_broadcast_addresses() -> list[str]:
    """Get the directed broadcast address of every IPv4 interface."""
    broadcasts = []

    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            if addr.address.startswith("127."):
                continue
            ip_parts = addr.address.split(".")
            mask_parts = addr.netmask.split(".")
            broadcast = ".".join(
                str(int(ip_parts[i]) | (255 - int(mask_parts[i])))
                for i in range(4)
            )
            if broadcast not in broadcasts:
                broadcasts.append(broadcast)

    return broadcasts or [LIMITED_BROADCAST]


def parse_announcement(raw: bytes) -> str | None:
    """Decode an announcement datagram into a display name.

    Returns None for payloads that are not UTF-8 or are blank.
    """
    try:
        name = raw.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None
    return name or None


class Broadcaster:
    """Announces *name* on the discovery port every *interval* seconds."""

    def __init__(
        self,
        name: str = DEVICE_NAME,
        port: int = BROADCAST_PORT,
        interval: float = BROADCAST_INTERVAL,
        addresses: list[str] | None = None,
    ):
        payload = name.encode("utf-8")
        if len(payload) > MAX_ANNOUNCEMENT_SIZE:
            raise ValueError(
                f"Announcement too large: {len(payload)} bytes "
                f"(max {MAX_ANNOUNCEMENT_SIZE})"
            )
        self.name = name
        self.port = port
        self.interval = interval
        self.addresses = addresses
        self._payload = payload
        self._sock: socket.socket | None = None
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the announcement loop in a daemon thread."""
        self._stopped.clear()
        self._thread = threading.Thread(
            target=self.run, name="qshare-broadcaster", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def run(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        self._sock = sock

        if self.addresses is None:
            self.addresses = get_broadcast_addresses()
        logger.info(
            "Announcing %r on UDP port %d via %s",
            self.name, self.port, ", ".join(self.addresses),
        )

        try:
            while not self._stopped.is_set():
                self.announce()
                self._stopped.wait(self.interval)
        finally:
            sock.close()
            self._sock = None

    def announce(self) -> None:
        """Send one announcement to every broadcast address.

        Send failures are logged; the next tick tries again.
        """
        for addr in self.addresses or [LIMITED_BROADCAST]:
            try:
                self._sock.sendto(self._payload, (addr, self.port))
            except OSError as e:
                logger.warning("Broadcast to %s:%d failed: %s", addr, self.port, e)


class Listener:
    """Receives announcements and upserts them into a PeerRegistry."""

    def __init__(self, registry: PeerRegistry, port: int = BROADCAST_PORT):
        self.registry = registry
        self.port = port
        # Set once the socket is bound (or binding failed).
        self.ready = threading.Event()
        self._sock: socket.socket | None = None
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the receive loop in a daemon thread."""
        self._stopped.clear()
        self.ready.clear()
        self._thread = threading.Thread(
            target=self.run, name="qshare-listener", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def run(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass

        try:
            sock.bind(("", self.port))
        except OSError as e:
            logger.error("Discovery listener could not bind UDP port %d: %s", self.port, e)
            sock.close()
            self.ready.set()
            return

        self.port = sock.getsockname()[1]
        sock.settimeout(LISTEN_POLL_INTERVAL)
        self._sock = sock
        self.ready.set()
        logger.info("Listening for announcements on UDP port %d", self.port)

        try:
            while not self._stopped.is_set():
                try:
                    raw, (sender_ip, _) = sock.recvfrom(MAX_ANNOUNCEMENT_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    logger.warning("Discovery receive failed: %s", e)
                    continue

                self.handle_announcement(raw, sender_ip)
        finally:
            sock.close()
            self._sock = None

    def handle_announcement(self, raw: bytes, sender_ip: str) -> None:
        """Record the announced name under the datagram's source address."""
        name = parse_announcement(raw)
        if name is None:
            logger.debug("Ignoring unreadable announcement from %s", sender_ip)
            return
        self.registry.upsert(name, sender_ip)
        logger.debug("Peer %r seen at %s", name, sender_ip)


class PeerDiscovery:
    """Manages LAN peer discovery: one broadcaster and one listener."""

    def __init__(
        self,
        name: str = DEVICE_NAME,
        port: int = BROADCAST_PORT,
        interval: float = BROADCAST_INTERVAL,
        registry: PeerRegistry | None = None,
        addresses: list[str] | None = None,
    ):
        self.registry = registry if registry is not None else PeerRegistry()
        self.broadcaster = Broadcaster(
            name=name, port=port, interval=interval, addresses=addresses
        )
        self.listener = Listener(self.registry, port=port)

    def start(self) -> None:
        """Start the broadcaster and listener threads."""
        self.listener.start()
        self.broadcaster.start()

    def stop(self) -> None:
        self.broadcaster.stop()
        self.listener.stop()

    def get_peers(self) -> list[tuple[str, str]]:
        """Return every peer seen so far as ``(name, address)`` pairs."""
        return self.registry.snapshot()
