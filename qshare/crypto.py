"""
Stream cipher layer applied to file payloads.

Payload bytes are encrypted with AES-256 in counter mode.  The key is the
SHA-256 digest of a shared passphrase and the counter block starts at zero,
so both ends of a connection produce the same keystream without any
handshake.  Each wrapper keeps its own keystream position: successive
write()/read() calls continue where the previous one stopped, for as long as
the wrapped stream lives.

    sender:    plaintext --EncryptingWriter--> connection
    receiver:  connection --DecryptingReader--> plaintext

Note: a fixed key with a fixed counter reuses the same keystream for every
connection.  This matches the existing wire format and is not meant to
withstand an attacker on the network.
"""

import hashlib
from functools import lru_cache

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import PASSPHRASE

KEY_SIZE = 32
# Initial counter block (one AES block of zeros).
INITIAL_COUNTER = bytes(algorithms.AES.block_size // 8)


def derive_key(passphrase: str) -> bytes:
    """Return the 32-byte SHA-256 digest of *passphrase*."""
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


@lru_cache(maxsize=None)
def transfer_key() -> bytes:
    """The process-wide transfer key, derived once from PASSPHRASE."""
    return derive_key(PASSPHRASE)


def _ctr_cipher(key: bytes) -> Cipher:
    return Cipher(algorithms.AES(key), modes.CTR(INITIAL_COUNTER))


class EncryptingWriter:
    """Encrypts everything written to it and forwards it to *sink*."""

    def __init__(self, key: bytes, sink):
        self._encryptor = _ctr_cipher(key).encryptor()
        self._sink = sink

    def write(self, data: bytes) -> int:
        self._sink.write(self._encryptor.update(data))
        return len(data)

    def flush(self) -> None:
        self._sink.flush()


class DecryptingReader:
    """Decrypts bytes pulled from *source* as they are read."""

    def __init__(self, key: bytes, source):
        self._decryptor = _ctr_cipher(key).decryptor()
        self._source = source

    def read(self, size: int = -1) -> bytes:
        data = self._source.read(size)
        if not data:
            return b""
        return self._decryptor.update(data)


def wrap_writer(key: bytes, sink) -> EncryptingWriter:
    return EncryptingWriter(key, sink)


def wrap_reader(key: bytes, source) -> DecryptingReader:
    return DecryptingReader(key, source)
