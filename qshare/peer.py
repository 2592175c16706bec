"""
QShare — quick LAN file transfer.

Main entry point.  Starts discovery, then lists peers, sends files to a peer,
or receives files until told to stop.

Usage:
    qshare peers                          # show peers announcing on the LAN
    qshare send --to NAME FILE [FILE...]  # send files to a discovered peer
    qshare receive [--dir DIR]            # receive until 'exit' or Ctrl-C
"""

import argparse
import logging
import sys
import threading
import time

from .client import FileResult, format_size, send_files
from .config import (
    BROADCAST_INTERVAL,
    BROADCAST_PORT,
    DEFAULT_SAVE_DIR,
    DEVICE_NAME,
    TRANSFER_PORT,
)
from .discovery import PeerDiscovery
from .protocol import ProgressCallback
from .registry import PeerRegistry
from .server import CancellationSignal, FileReceiver

logger = logging.getLogger(__name__)


class QSharePeer:
    """One host on the LAN: discovery plus the send/serve surface."""

    def __init__(
        self,
        name: str = DEVICE_NAME,
        discovery_port: int = BROADCAST_PORT,
        transfer_port: int = TRANSFER_PORT,
        interval: float = BROADCAST_INTERVAL,
        registry: PeerRegistry | None = None,
    ):
        self.name = name
        self.transfer_port = transfer_port
        self.registry = registry if registry is not None else PeerRegistry()
        self.discovery = PeerDiscovery(
            name=name, port=discovery_port, interval=interval, registry=self.registry
        )
        self.receiver = FileReceiver(port=transfer_port)

    def start(self) -> None:
        self.discovery.start()

    def stop(self) -> None:
        self.cancel_serve()
        self.discovery.stop()

    def discover(self) -> list[tuple[str, str]]:
        """Snapshot of every peer seen so far."""
        return self.registry.snapshot()

    def send(
        self,
        paths: list[str],
        target: str,
        progress_callback: ProgressCallback | None = None,
    ) -> list[FileResult]:
        return send_files(
            paths,
            target,
            self.registry,
            port=self.transfer_port,
            progress_callback=progress_callback,
        )

    def serve(
        self,
        save_dir: str = DEFAULT_SAVE_DIR,
        cancellation: CancellationSignal | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Receive files until cancelled.  Blocks; raises BindError."""
        self.receiver.progress_callback = progress_callback
        self.receiver.serve(save_dir, cancellation)

    def cancel_serve(self) -> None:
        self.receiver.cancel()


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------


def _print_peers(peers: list[tuple[str, str]]) -> None:
    if not peers:
        print("  No devices found.")
        return
    print(f"  {'Name':<30} {'Address':>16}")
    print(f"  {'-' * 30} {'-' * 16}")
    for name, address in peers:
        print(f"  {name:<30} {address:>16}")


def _cmd_peers(peer: QSharePeer, args) -> int:
    time.sleep(args.wait)
    _print_peers(peer.discover())
    return 0


def _cmd_send(peer: QSharePeer, args) -> int:
    time.sleep(args.wait)
    results = peer.send(args.paths, args.to)

    failed = 0
    for result in results:
        if result.ok:
            print(f"  Sent {result.filename} ({format_size(result.size)})")
        else:
            failed += 1
            print(f"  [!] {result.path}: {result.error}")
    return 1 if failed else 0


def _cmd_receive(peer: QSharePeer, args) -> int:
    cancellation = CancellationSignal()
    errors: list[BaseException] = []

    def run() -> None:
        try:
            peer.serve(args.dir, cancellation)
        except Exception as e:
            errors.append(e)
            cancellation.cancel()

    def read_commands() -> None:
        # Left blocked in readline() if serve fails first; it is a daemon.
        while not cancellation.is_set():
            line = sys.stdin.readline()
            if not line or line.strip().lower() == "exit":
                cancellation.cancel()
                return

    thread = threading.Thread(target=run, name="qshare-serve", daemon=True)
    thread.start()

    print(f"  Hostname: {peer.name}")
    print(f"  Files will be saved in: {args.dir}")
    print("  Type 'exit' and press ENTER to stop receiving.")

    threading.Thread(target=read_commands, name="qshare-stdin", daemon=True).start()

    try:
        # join() with a timeout keeps Ctrl-C deliverable to this thread.
        while thread.is_alive():
            thread.join(0.5)
    except KeyboardInterrupt:
        print()
        cancellation.cancel()
        thread.join()

    if errors:
        print(f"  [!] {errors[0]}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="qshare", description="QShare LAN file transfer")
    parser.add_argument("--name", default=DEVICE_NAME, help="Name announced to other peers")
    parser.add_argument(
        "--discovery-port", type=int, default=BROADCAST_PORT, help="UDP discovery port"
    )
    parser.add_argument(
        "--transfer-port", type=int, default=TRANSFER_PORT, help="TCP transfer port"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    peers_cmd = commands.add_parser("peers", help="List discovered peers")
    peers_cmd.add_argument("--wait", type=float, default=3, help="Seconds to listen first")
    peers_cmd.set_defaults(handler=_cmd_peers)

    send_cmd = commands.add_parser("send", help="Send files to a peer")
    send_cmd.add_argument("--to", required=True, help="Name of the receiving peer")
    send_cmd.add_argument("--wait", type=float, default=3, help="Seconds to listen first")
    send_cmd.add_argument("paths", nargs="+", help="Files to send")
    send_cmd.set_defaults(handler=_cmd_send)

    receive_cmd = commands.add_parser("receive", help="Receive files")
    receive_cmd.add_argument("--dir", default=DEFAULT_SAVE_DIR, help="Save directory")
    receive_cmd.set_defaults(handler=_cmd_receive)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    peer = QSharePeer(
        name=args.name,
        discovery_port=args.discovery_port,
        transfer_port=args.transfer_port,
    )
    peer.start()
    try:
        return args.handler(peer, args)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"  [!] {e}")
        return 1
    finally:
        peer.stop()


if __name__ == "__main__":
    sys.exit(main())
