"""
Tests for peer.py — the discover/send/serve surface used by front ends.
"""

import io
import sys
import threading
import time
from types import SimpleNamespace

import pytest

from qshare.errors import BindError, PeerUnknownError
from qshare.peer import QSharePeer, _cmd_receive
from qshare.registry import PeerRegistry


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class BlockingStdin:
    """stdin that produces nothing until released, then EOF."""

    def __init__(self):
        self.released = threading.Event()

    def readline(self):
        self.released.wait()
        return ""


def test_discover_returns_snapshot():
    registry = PeerRegistry()
    registry.upsert("laptop", "10.0.0.4")
    peer = QSharePeer(name="me", registry=registry)
    assert peer.discover() == [("laptop", "10.0.0.4")]


def test_send_to_unknown_peer():
    peer = QSharePeer(name="me")
    with pytest.raises(PeerUnknownError):
        peer.send(["whatever.txt"], "nonexistent")


def test_send_and_serve(tmp_path):
    receiving = QSharePeer(name="receiver", transfer_port=0)
    save_dir = tmp_path / "inbox"
    thread = threading.Thread(target=receiving.serve, args=(str(save_dir),), daemon=True)
    thread.start()
    assert receiving.receiver.ready.wait(5)

    registry = PeerRegistry()
    registry.upsert("receiver", "127.0.0.1")
    sending = QSharePeer(
        name="sender", transfer_port=receiving.receiver.port, registry=registry
    )
    src = tmp_path / "a.txt"
    src.write_bytes(b"hello")

    try:
        results = sending.send([str(src)], "receiver")
        assert [r.ok for r in results] == [True]
        assert wait_for(lambda: (save_dir / "a.txt").exists()
                        and (save_dir / "a.txt").read_bytes() == b"hello")
    finally:
        receiving.cancel_serve()
        thread.join(timeout=5)

    assert not thread.is_alive()
    assert not receiving.receiver.ready.is_set()


def test_cancel_serve_before_serve_starts(tmp_path):
    peer = QSharePeer(name="me", transfer_port=0)
    peer.cancel_serve()
    thread = threading.Thread(target=peer.serve, args=(str(tmp_path),), daemon=True)
    thread.start()
    thread.join(timeout=5)
    assert not thread.is_alive()


class TestReceiveCommand:
    def test_bind_failure_exits_without_waiting_for_input(
        self, tmp_path, monkeypatch, capsys
    ):
        peer = QSharePeer(name="me", transfer_port=0)

        def fail_to_bind(*args, **kwargs):
            raise BindError(50001, OSError("Address already in use"))

        monkeypatch.setattr(peer, "serve", fail_to_bind)
        stdin = BlockingStdin()
        monkeypatch.setattr(sys, "stdin", stdin)

        outcome = []
        thread = threading.Thread(
            target=lambda: outcome.append(
                _cmd_receive(peer, SimpleNamespace(dir=str(tmp_path)))
            ),
            daemon=True,
        )
        thread.start()
        try:
            thread.join(timeout=5)
            assert not thread.is_alive()
        finally:
            stdin.released.set()

        assert outcome == [1]
        assert "Could not listen on TCP port 50001" in capsys.readouterr().out

    def test_exit_line_stops_receiving(self, tmp_path, monkeypatch):
        peer = QSharePeer(name="me", transfer_port=0)
        monkeypatch.setattr(sys, "stdin", io.StringIO("exit\n"))

        assert _cmd_receive(peer, SimpleNamespace(dir=str(tmp_path / "inbox"))) == 0
        assert not peer.receiver.ready.is_set()
