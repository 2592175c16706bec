"""
TCP client — sends a batch of files to a discovered peer.

One connection carries the whole batch: a header line and an encrypted
payload per file, in the order the paths were given.  Files that cannot be
sent (missing, unreadable, directories) are skipped and reported; only a
broken connection aborts the batch.
"""

import logging
import os
import socket
import stat
from dataclasses import dataclass

from .config import TRANSFER_PORT
from .crypto import transfer_key, wrap_writer
from .errors import PeerConnectionError, PeerUnknownError, TransferError
from .protocol import FileRecord, ProgressCallback, send_file
from .registry import PeerRegistry

logger = logging.getLogger(__name__)


@dataclass
class FileResult:
    """Outcome of sending one path."""

    path: str
    filename: str
    size: int = 0
    sent: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.sent == self.size


def _connect(host: str, port: int, timeout: float | None = 10) -> socket.socket:
    """Open a TCP connection to a remote peer.

    The timeout only bounds the connect; transfers block without one.
    """
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise PeerConnectionError(host, port, e) from e
    sock.settimeout(None)
    return sock


def format_size(size_bytes: int) -> str:
    """Human-readable file size: whole bytes, otherwise one decimal place."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def send_files(
    paths: list[str],
    target: str,
    registry: PeerRegistry,
    port: int = TRANSFER_PORT,
    progress_callback: ProgressCallback | None = None,
) -> list[FileResult]:
    """
    Send *paths* to the peer registered as *target*.

    Returns one FileResult per path, in order.
    Raises PeerUnknownError (before any network I/O) if *target* has not been
    discovered, PeerConnectionError if it cannot be reached, and
    TransferError if the connection breaks mid-batch.
    """
    address = registry.get(target)
    if address is None:
        raise PeerUnknownError(target)

    sock = _connect(address, port)
    logger.info("Connected to %s (%s:%d)", target, address, port)

    results = []
    try:
        with sock, sock.makefile("wb") as stream:
            writer = wrap_writer(transfer_key(), stream)
            for path in paths:
                result = _send_one(stream, writer, path, progress_callback)
                results.append(result)
    except OSError as e:
        logger.error("Connection to %s lost: %s", target, e)
        raise TransferError(f"Connection to {target} lost: {e}") from e

    return results


def _send_one(stream, writer, path: str, progress_callback) -> FileResult:
    filename = os.path.basename(os.path.normpath(path))
    result = FileResult(path=path, filename=filename)

    try:
        info = os.stat(path)
    except OSError as e:
        logger.warning("Could not access %s: %s", path, e)
        result.error = f"could not access: {e.strerror or e}"
        return result

    if stat.S_ISDIR(info.st_mode):
        logger.warning("Skipping %s: is a directory", path)
        result.error = "is a directory"
        return result

    result.size = info.st_size
    try:
        source = open(path, "rb")
    except OSError as e:
        logger.warning("Could not open %s: %s", path, e)
        result.error = f"could not open: {e.strerror or e}"
        return result

    record = FileRecord(filename=filename, size=info.st_size)
    logger.info("Sending %s (%s)", filename, format_size(record.size))
    with source:
        try:
            result.sent = send_file(stream, writer, source, record, progress_callback)
        except ValueError as e:
            # Raised before anything is written for this file.
            logger.warning("Skipping %s: %s", path, e)
            result.error = str(e)
            return result

    if result.sent < record.size:
        result.error = (
            f"read stopped after {result.sent} of {record.size} bytes; "
            "rest sent as zeros"
        )
    else:
        logger.info("Sent %s", filename)
    return result
