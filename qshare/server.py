"""
TCP file receiver — accepts connections from sending peers and saves the
files they carry into a save directory.

serve() runs two loops:
  1. An accept thread that pushes every accepted connection onto a queue.
  2. A dispatch loop (in the calling thread) that waits for either a queued
     connection or the CancellationSignal.  Connections are handled one at a
     time, to completion, before the next one is dequeued.

Cancelling closes the listening socket, which is how the accept thread learns
it should exit; the "listener closed" error it then sees is the normal
shutdown path, not a failure.  A connection being handled when the signal
arrives is not interrupted: serve() returns once it has finished.
"""

import logging
import os
import queue
import socket
import threading

from .config import DEFAULT_SAVE_DIR, TRANSFER_PORT
from .crypto import transfer_key, wrap_reader
from .errors import BindError
from .protocol import (
    FileRecord,
    ProgressCallback,
    parse_metadata,
    read_metadata,
    recv_file,
    safe_filename,
)

logger = logging.getLogger(__name__)

# Seconds between checks of the cancellation signal / listener state.
DISPATCH_POLL_INTERVAL = 0.2
ACCEPT_POLL_INTERVAL = 1.0
# Pause after an unexpected accept() error before trying again.
ACCEPT_RETRY_DELAY = 0.5


class CancellationSignal(threading.Event):
    """One-shot request for a running serve() to stop accepting and return."""

    def cancel(self) -> None:
        self.set()


class FileReceiver:
    """Receives files sent by QShare peers."""

    def __init__(
        self,
        port: int = TRANSFER_PORT,
        host: str = "0.0.0.0",
        progress_callback: ProgressCallback | None = None,
    ):
        self.host = host
        self.port = port
        self.progress_callback = progress_callback
        # Set once the listening socket is bound and serve() is accepting.
        self.ready = threading.Event()
        self._sock: socket.socket | None = None
        self._sock_lock = threading.Lock()
        # Set by cancel(); kept if it arrives before serve() starts.
        self._cancelled = CancellationSignal()
        self._connections: queue.Queue[tuple[socket.socket, tuple]] = queue.Queue()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def serve(
        self,
        save_dir: str = DEFAULT_SAVE_DIR,
        cancellation: CancellationSignal | None = None,
    ) -> None:
        """Receive files into *save_dir* until *cancellation* is set or
        cancel() is called.

        Raises BindError if the transfer port cannot be bound.
        """
        os.makedirs(save_dir, exist_ok=True)
        self._connections = queue.Queue()

        sock = self._listen()
        accept_thread = threading.Thread(
            target=self._accept_loop, args=(sock,), name="qshare-accept", daemon=True
        )
        accept_thread.start()
        self.ready.set()
        logger.info("Ready to receive on TCP port %d, saving to %s", self.port, save_dir)

        try:
            self._dispatch_loop(save_dir, cancellation)
        finally:
            self.ready.clear()
            self._close_listener()
            accept_thread.join()
            self._drop_pending()
            self._cancelled.clear()
        logger.info("Receiver stopped")

    def cancel(self) -> None:
        """Ask serve() to stop; if it has not started yet, it returns at once."""
        self._cancelled.cancel()

    def _stopping(self, cancellation: CancellationSignal | None) -> bool:
        if self._cancelled.is_set():
            return True
        return cancellation is not None and cancellation.is_set()

    def _listen(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(5)
        except OSError as e:
            sock.close()
            logger.error("Could not start TCP listener on port %d: %s", self.port, e)
            raise BindError(self.port, e) from e

        self.port = sock.getsockname()[1]
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        with self._sock_lock:
            self._sock = sock
        return sock

    def _close_listener(self) -> None:
        with self._sock_lock:
            sock, self._sock = self._sock, None
        if sock is None:
            return
        # shutdown() wakes a thread blocked in accept(); close() alone may not.
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    def _listener_closed(self) -> bool:
        with self._sock_lock:
            return self._sock is None

    def _drop_pending(self) -> None:
        """Close connections that were accepted but never dispatched."""
        while True:
            try:
                conn, addr = self._connections.get_nowait()
            except queue.Empty:
                return
            logger.info("Dropping pending connection from %s", addr[0])
            conn.close()

    # ------------------------------------------------------------------
    # Accept / dispatch loops
    # ------------------------------------------------------------------

    def _accept_loop(self, sock: socket.socket) -> None:
        while True:
            try:
                conn, addr = sock.accept()
            except socket.timeout:
                if self._listener_closed():
                    return
                continue
            except OSError as e:
                if self._listener_closed():
                    return
                logger.warning("Accept error: %s", e)
                self._cancelled.wait(ACCEPT_RETRY_DELAY)
                continue

            conn.settimeout(None)
            self._connections.put((conn, addr))

    def _dispatch_loop(self, save_dir: str, cancellation: CancellationSignal | None) -> None:
        while not self._stopping(cancellation):
            try:
                conn, addr = self._connections.get(timeout=DISPATCH_POLL_INTERVAL)
            except queue.Empty:
                continue
            self.handle_connection(conn, addr, save_dir)

    # ------------------------------------------------------------------
    # Connection handler
    # ------------------------------------------------------------------

    def handle_connection(self, conn: socket.socket, addr: tuple, save_dir: str) -> int:
        """Receive every file on *conn*.  Returns the number read off it in full."""
        peer = addr[0]
        logger.info("Connection from %s", peer)
        saved = 0

        with conn, conn.makefile("rb") as reader:
            # Metadata and payload are read through this one buffered reader.
            payload = wrap_reader(transfer_key(), reader)
            while True:
                try:
                    line = read_metadata(reader)
                except ValueError as e:
                    logger.warning("Closing connection from %s: %s", peer, e)
                    break
                except OSError as e:
                    logger.error("Error reading from %s: %s", peer, e)
                    break

                if line is None:
                    logger.info("All files received from %s", peer)
                    break

                record = parse_metadata(line)
                if record is None:
                    logger.warning("Skipping malformed metadata line from %s: %r", peer, line[:80])
                    continue

                if not self._receive_file(payload, record, save_dir, peer):
                    break
                saved += 1

        return saved

    def _receive_file(self, payload, record: FileRecord, save_dir: str, peer: str) -> bool:
        """Save one file.  Returns False if the connection can't carry more."""
        filepath = os.path.join(save_dir, safe_filename(record.filename))
        logger.info("Receiving %s (%d bytes) from %s", record.filename, record.size, peer)

        try:
            out = open(filepath, "wb")
        except OSError as e:
            # Still consume the payload so the next header lines up.
            logger.warning("Could not write %s: %s; discarding payload", filepath, e)
            out = None

        try:
            received = recv_file(payload, out, record, self.progress_callback)
        except OSError as e:
            logger.error("Error receiving %s from %s: %s", record.filename, peer, e)
            return False
        finally:
            if out is not None:
                out.close()

        if received < record.size:
            logger.warning(
                "Stream from %s ended after %d of %d bytes; kept partial %s",
                peer, received, record.size, filepath,
            )
            return False

        if out is not None:
            logger.info("Saved %s", filepath)
        return True
