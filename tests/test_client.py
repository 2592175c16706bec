"""
Tests for client.py — format_size and the batch sender.
"""

import io
import os
import socket
import stat
import threading

import pytest

from qshare import client
from qshare.client import format_size, send_files
from qshare.crypto import transfer_key, wrap_reader
from qshare.errors import PeerConnectionError, PeerUnknownError
from qshare.protocol import parse_metadata, read_metadata, recv_file
from qshare.registry import PeerRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def loopback_registry(name="receiver"):
    registry = PeerRegistry()
    registry.upsert(name, "127.0.0.1")
    return registry


class CaptureServer:
    """Accepts one connection and records every byte sent on it."""

    def __init__(self):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(1)
        self.port = self._sock.getsockname()[1]
        self.data = b""
        self._thread = threading.Thread(target=self._run)
        self._thread.start()

    def _run(self):
        conn, _ = self._sock.accept()
        chunks = []
        with conn:
            while True:
                chunk = conn.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        self.data = b"".join(chunks)
        self._sock.close()

    def join(self):
        self._thread.join(timeout=5)
        return self.data


def decode(data):
    reader = io.BufferedReader(io.BytesIO(data))
    payload = wrap_reader(transfer_key(), reader)
    files = []
    while (line := read_metadata(reader)) is not None:
        record = parse_metadata(line)
        sink = io.BytesIO()
        recv_file(payload, sink, record)
        files.append((record.filename, sink.getvalue()))
    return files


# ---------------------------------------------------------------------------
# format_size
# ---------------------------------------------------------------------------


class TestFormatSize:
    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0 B"),
            (5, "5 B"),
            (1023, "1023 B"),
            (1024, "1.0 KB"),
            (8192, "8.0 KB"),
            (200_000, "195.3 KB"),
            (1024 * 1024 - 1, "1024.0 KB"),
            (5 * 1024 * 1024 + 512 * 1024, "5.5 MB"),
            (3 * 1024**3, "3.0 GB"),
            (2 * 1024**4, "2.0 TB"),
        ],
    )
    def test_sizes_printed_by_cli(self, size, expected):
        assert format_size(size) == expected


# ---------------------------------------------------------------------------
# send_files
# ---------------------------------------------------------------------------


class TestSendFiles:
    def test_unknown_peer_does_no_network_io(self, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr(
            client.socket, "create_connection", lambda *a, **kw: calls.append(a)
        )
        src = tmp_path / "a.txt"
        src.write_bytes(b"hello")

        with pytest.raises(PeerUnknownError):
            send_files([str(src)], "nonexistent", PeerRegistry())
        assert calls == []

    def test_unreachable_peer(self, tmp_path):
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
        probe.close()

        src = tmp_path / "a.txt"
        src.write_bytes(b"hello")

        with pytest.raises(PeerConnectionError):
            send_files([str(src)], "receiver", loopback_registry(), port=port)

    def test_wire_format(self, tmp_path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"hello")
        server = CaptureServer()

        results = send_files([str(src)], "receiver", loopback_registry(), port=server.port)
        data = server.join()

        assert data.startswith(b"a.txt<SEPARATOR>5\n")
        assert decode(data) == [("a.txt", b"hello")]
        assert len(results) == 1
        assert results[0].ok
        assert (results[0].filename, results[0].size, results[0].sent) == ("a.txt", 5, 5)

    def test_bad_paths_are_skipped(self, tmp_path):
        first = tmp_path / "first.txt"
        first.write_bytes(b"one")
        folder = tmp_path / "folder"
        folder.mkdir()
        last = tmp_path / "last.txt"
        last.write_bytes(b"three")
        server = CaptureServer()

        paths = [str(first), str(tmp_path / "missing.txt"), str(folder), str(last)]
        results = send_files(paths, "receiver", loopback_registry(), port=server.port)
        data = server.join()

        assert decode(data) == [("first.txt", b"one"), ("last.txt", b"three")]
        assert [r.ok for r in results] == [True, False, False, True]
        assert results[1].error.startswith("could not access")
        assert results[2].error == "is a directory"

    def test_file_shrinking_mid_send_keeps_batch_aligned(self, tmp_path, monkeypatch):
        short = tmp_path / "short.txt"
        short.write_bytes(b"ab")
        after = tmp_path / "next.txt"
        after.write_bytes(b"second")

        real_stat = os.stat

        def stale_stat(path, *args, **kwargs):
            info = real_stat(path, *args, **kwargs)
            if str(path) == str(short):
                fields = list(info)
                fields[stat.ST_SIZE] = 10
                return os.stat_result(fields)
            return info

        monkeypatch.setattr(client.os, "stat", stale_stat)
        server = CaptureServer()

        results = send_files(
            [str(short), str(after)], "receiver", loopback_registry(), port=server.port
        )
        data = server.join()

        assert decode(data) == [("short.txt", b"ab" + bytes(8)), ("next.txt", b"second")]
        assert not results[0].ok
        assert results[0].sent == 2
        assert "rest sent as zeros" in results[0].error
        assert results[1].ok

    def test_progress_callback(self, tmp_path):
        src = tmp_path / "a.txt"
        src.write_bytes(b"hello")
        server = CaptureServer()
        calls = []

        send_files(
            [str(src)], "receiver", loopback_registry(), port=server.port,
            progress_callback=lambda *args: calls.append(args),
        )
        server.join()

        assert calls == [("a.txt", 5, 5)]
