"""
QShare - quick LAN file transfer

Peers find each other by UDP broadcast and send files over an encrypted
TCP stream.
"""

__version__ = "1.0.0"

from .client import FileResult, format_size, send_files
from .config import (
    BROADCAST_INTERVAL,
    BROADCAST_PORT,
    BUFFER_SIZE,
    DEFAULT_SAVE_DIR,
    DEVICE_NAME,
    SEPARATOR,
    TRANSFER_PORT,
)
from .crypto import derive_key, transfer_key, wrap_reader, wrap_writer
from .discovery import Broadcaster, Listener, PeerDiscovery
from .errors import (
    BindError,
    PeerConnectionError,
    PeerUnknownError,
    QShareError,
    TransferError,
)
from .peer import QSharePeer
from .protocol import FileRecord
from .registry import PeerRegistry
from .server import CancellationSignal, FileReceiver

__all__ = [
    "BROADCAST_PORT",
    "TRANSFER_PORT",
    "BUFFER_SIZE",
    "BROADCAST_INTERVAL",
    "SEPARATOR",
    "DEFAULT_SAVE_DIR",
    "DEVICE_NAME",
    "QSharePeer",
    "PeerRegistry",
    "PeerDiscovery",
    "Broadcaster",
    "Listener",
    "FileReceiver",
    "CancellationSignal",
    "FileRecord",
    "FileResult",
    "send_files",
    "format_size",
    "derive_key",
    "transfer_key",
    "wrap_reader",
    "wrap_writer",
    "QShareError",
    "PeerUnknownError",
    "PeerConnectionError",
    "BindError",
    "TransferError",
]
