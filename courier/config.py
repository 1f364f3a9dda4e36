"""Single source of truth for all configuration and secrets.

All modules import from here, never from os.environ directly.

Values come from secrets/internal.env (or the SOPS-encrypted
secrets/internal.env.enc when COURIER_USE_SOPS=true). Any key can be
overridden with a COURIER_-prefixed environment variable, e.g.
COURIER_DOCUMENT_SOURCE_DIR.
"""

import os
from pathlib import Path

from courier.secrets import environ_overrides, load_env_file, load_secrets

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("COURIER_USE_SOPS", "false").lower() == "true"

_KEYS = [
    "DOCUMENT_SOURCE_DIR",
    "DOCUMENT_TARGET_DIR",
    "MESSAGE_SOURCE_DIR",
    "MESSAGE_TARGET_DIR",
    "RECORDS_BASE_URL",
    "RECORDS_API_TOKEN",
    "RECORDS_REGISTER_PATH",
    "RECORDS_INGEST_PATH",
    "STATUS_LOG_PATH",
    "COOLDOWN_SECONDS",
]


def _load(scope: str) -> dict[str, str | None]:
    """Load file values for a scope, then apply environment overrides."""
    if USE_SOPS:
        values = load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    else:
        values = load_env_file(PROJECT_ROOT / f"secrets/{scope}.env")
    values.update(environ_overrides(_KEYS))
    return values


_internal = _load("internal")

# --- Root pairs (inbound -> archive) ---
DOCUMENT_SOURCE_DIR: str = _internal.get("DOCUMENT_SOURCE_DIR") or ""
DOCUMENT_TARGET_DIR: str = _internal.get("DOCUMENT_TARGET_DIR") or ""
MESSAGE_SOURCE_DIR: str = _internal.get("MESSAGE_SOURCE_DIR") or ""
MESSAGE_TARGET_DIR: str = _internal.get("MESSAGE_TARGET_DIR") or ""

# --- Records service (registration + HL7 ingestion) ---
RECORDS_BASE_URL: str = _internal.get("RECORDS_BASE_URL") or ""
RECORDS_API_TOKEN: str = _internal.get("RECORDS_API_TOKEN") or ""
RECORDS_REGISTER_PATH: str = _internal.get("RECORDS_REGISTER_PATH") or "/documents/path"
RECORDS_INGEST_PATH: str = (
    _internal.get("RECORDS_INGEST_PATH") or "/hl7-parser-end-point.php"
)

# --- Pipeline ---
STATUS_LOG_PATH: str = _internal.get("STATUS_LOG_PATH") or str(
    PROJECT_ROOT / "data" / "status.jsonl"
)
COOLDOWN_SECONDS: float = float(_internal.get("COOLDOWN_SECONDS") or "7")
