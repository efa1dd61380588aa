"""Well-known identifiers and seed values for the singleton aggregates."""

from __future__ import annotations

APP_PROFILE_ID = "00000000-0000-0000-0000-000000000001"
ENGINE_PROFILE_ID = "00000000-0000-0000-0000-000000000002"
FS_POLICY_ID = "00000000-0000-0000-0000-000000000003"
REVISION_ROW_ID = 1

SERVER_ROOT = ".server_root"

APP_PROFILE_SEED: dict = {
    "mode": "setup",
    "auth_mode": "api_key",
    "instance_name": "revaer",
    "http_port": 7070,
    "bind_addr": "127.0.0.1",
}

ENGINE_PROFILE_SEED: dict = {
    "implementation": "libtorrent",
    "resume_dir": f"{SERVER_ROOT}/resume",
    "download_root": f"{SERVER_ROOT}/downloads",
}

FS_POLICY_SEED: dict = {
    "library_root": f"{SERVER_ROOT}/library",
}

FS_ALLOW_PATHS_SEED: tuple[str, ...] = (
    f"{SERVER_ROOT}/downloads",
    f"{SERVER_ROOT}/library",
)

# Upper bound for every bytes-per-second cap.
MAX_RATE_LIMIT_BPS = 5_000_000_000

MAX_TRACKER_URL_LEN = 512
MAX_TRACKER_FIELD_LEN = 255
MAX_TLS_FIELD_LEN = 512
MAX_REQUEST_TIMEOUT_MS = 900_000

PEER_CLASS_ID_MAX = 31
PEER_PRIORITY_MIN = 1
PEER_PRIORITY_MAX = 255
PEER_CONNECTION_FACTOR_DEFAULT = 100
