"""Application-wide configuration constants."""

import os

# --- Networking ---
API_HOST = "0.0.0.0"
API_PORT = 8765
LISTEN_HOST = "0.0.0.0"
TRANSFER_PORT = int(os.environ.get("NETDROP_PORT", 27001))
RELAY_PORT = int(os.environ.get("NETDROP_RELAY_PORT", 27001))
CONNECT_TIMEOUT = float(os.environ.get("NETDROP_CONNECT_TIMEOUT", 5))  # seconds

# --- Discovery ---
PROBE_TIMEOUT = float(os.environ.get("NETDROP_PROBE_TIMEOUT", 1))  # seconds
DISCOVERY_CONCURRENCY = int(os.environ.get("NETDROP_SCAN_WORKERS", 256))
MIN_PREFIX_LENGTH = int(os.environ.get("NETDROP_MIN_PREFIX", 24))
VIRTUAL_INTERFACE_PREFIXES = (
    "docker", "br-", "veth", "virbr", "vboxnet", "vmnet",
    "lo", "tun", "tap", "zt", "wg",
)

# --- Transfer ---
CHUNK_SIZE = int(os.environ.get("NETDROP_BUFFER_SIZE", 1024 * 64))  # 64 KB
HISTORY_LIMIT = 200

# --- Storage ---
DEFAULT_SAVE_DIR = os.environ.get("NETDROP_SAVE_DIR", os.getcwd())
