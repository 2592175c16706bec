"""
Configuration constants for the QShare LAN file transfer system.
"""

import os
import platform
import socket

# --- Networking ---
BROADCAST_PORT = 50000       # UDP port for discovery announcements
TRANSFER_PORT = 50001        # TCP port for file transfers
BUFFER_SIZE = 8192           # Chunk size (bytes) for file transfer
BROADCAST_INTERVAL = 2       # Seconds between discovery announcements
MAX_ANNOUNCEMENT_SIZE = 1024 # Largest accepted discovery datagram

# --- Protocol ---
SEPARATOR = "<SEPARATOR>"    # Delimiter between filename and size in metadata
MAX_METADATA_LINE = 4096     # Longest metadata line a receiver will buffer

# --- Encryption ---
PASSPHRASE = "qshare"        # Shared secret every peer derives its key from

# --- File Storage ---
DEFAULT_SAVE_DIR = os.path.join(os.path.expanduser("~"), "Downloads", "QShare")

# --- Identity ---
DEVICE_NAME = socket.gethostname() or platform.node() or "unknown"
