"""
Wire protocol for sending one or more files over a single TCP connection.

Every file is framed as a plaintext metadata line followed by exactly
``size`` bytes of encrypted payload:

    [ <filename><SEPARATOR><decimal size>\\n ][ size bytes: AES-CTR payload ]

There is no end-of-file marker and no per-file reset: the cipher stream is
continuous across all files on the connection, and the sender closes the
connection after the last file.

Both directions go through a single buffered stream per connection.  The
receiver reads metadata lines and payload bytes from the same BufferedReader
(the DecryptingReader wraps it), so line look-ahead can never swallow bytes
that belong to a payload.  The sender likewise writes metadata and payload
into one BufferedWriter so they reach the socket in order.
"""

import logging
import re
from dataclasses import dataclass

from typing_extensions import Callable

from .config import BUFFER_SIZE, MAX_METADATA_LINE, SEPARATOR

logger = logging.getLogger(__name__)

# Windows reserved device names that must never be used as filenames.
_WINDOWS_RESERVED = re.compile(
    r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])(\.|$)", re.IGNORECASE
)

FALLBACK_FILENAME = "received"

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class FileRecord:
    """Header of one transfer unit on the wire."""

    filename: str
    size: int


# ---------------------------------------------------------------------------
# Metadata lines
# ---------------------------------------------------------------------------


def format_metadata(filename: str, size: int) -> bytes:
    """Encode the plaintext header line for one file."""
    if SEPARATOR in filename or "\n" in filename:
        raise ValueError(f"Filename cannot be framed: {filename!r}")
    return f"{filename}{SEPARATOR}{size}\n".encode("utf-8")


def parse_metadata(line: bytes) -> FileRecord | None:
    """Parse a header line.  Returns None if the line is malformed."""
    try:
        text = line.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None

    parts = text.split(SEPARATOR)
    if len(parts) != 2 or not parts[0]:
        return None

    filename, size_str = parts
    # Plain ASCII decimal only; int() would also take "+5", "5_000", " 5".
    if not (size_str.isascii() and size_str.isdigit()):
        return None
    return FileRecord(filename=filename, size=int(size_str))


def read_metadata(reader, limit: int = MAX_METADATA_LINE) -> bytes | None:
    """Read one header line from the connection's shared buffered reader.

    Returns None on end-of-stream.  Raises ValueError when the line is longer
    than *limit* bytes, since the stream can no longer be resynchronised.
    """
    line = reader.readline(limit)
    if not line:
        return None
    if not line.endswith(b"\n"):
        if len(line) >= limit:
            raise ValueError(f"Metadata line exceeds {limit} bytes")
        logger.warning("Connection closed in the middle of a metadata line")
        return None
    return line


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


def send_file(
    stream,
    writer,
    source,
    record: FileRecord,
    progress_callback: ProgressCallback | None = None,
) -> int:
    """Write the header for *record* to *stream*, then its payload via *writer*.

    *stream* is the connection's buffered writer and *writer* the encrypting
    wrapper around it.  Returns the number of bytes read from *source* and
    sent.  If *source* fails or runs short, the rest of the declared size is
    padded with zero bytes so the next header stays aligned.  Errors writing
    to the connection propagate.
    """
    stream.write(format_metadata(record.filename, record.size))

    sent = 0
    while sent < record.size:
        try:
            chunk = source.read(min(BUFFER_SIZE, record.size - sent))
        except OSError as e:
            logger.warning("Error reading %s: %s", record.filename, e)
            break
        if not chunk:
            logger.warning(
                "%s shrank while sending: %d of %d bytes",
                record.filename, sent, record.size,
            )
            break
        writer.write(chunk)
        sent += len(chunk)
        if progress_callback:
            progress_callback(record.filename, sent, record.size)

    padded = sent
    while padded < record.size:
        fill = min(BUFFER_SIZE, record.size - padded)
        writer.write(bytes(fill))
        padded += fill

    stream.flush()
    return sent


def recv_file(
    reader,
    sink,
    record: FileRecord,
    progress_callback: ProgressCallback | None = None,
) -> int:
    """Copy exactly ``record.size`` decrypted bytes from *reader* to *sink*.

    Returns the number of bytes received, which is short of ``record.size``
    only if the stream ended early.  Pass ``sink=None`` to consume and
    discard the payload.
    """
    received = 0
    while received < record.size:
        chunk = reader.read(min(BUFFER_SIZE, record.size - received))
        if not chunk:
            break
        if sink is not None:
            sink.write(chunk)
        received += len(chunk)
        if progress_callback:
            progress_callback(record.filename, received, record.size)
    return received


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def safe_filename(filename: str) -> str:
    """Sanitize an untrusted filename.

    - Strips directory components (prevents path traversal).
    - Removes null bytes.
    - Rejects Windows reserved device names (CON, NUL, COM1 … LPT9).
    - Falls back to "received" if the result is empty or a bare dot/dotdot.
    """
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = name.replace("\x00", "")
    if name in ("", ".", ".."):
        return FALLBACK_FILENAME
    if _WINDOWS_RESERVED.match(name):
        return FALLBACK_FILENAME
    return name
