"""Loaders for the SOPS-encrypted and plain dotenv configuration files."""

import os
import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values


def load_secrets(encrypted_path: str | Path) -> dict[str, str | None]:
    """Decrypt a SOPS-encrypted .env file and return its key-value pairs.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {path}")

    result = subprocess.run(
        ["sops", "--decrypt", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return dict(dotenv_values(stream=StringIO(result.stdout)))


def load_env_file(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file; a missing file yields an empty mapping.

    Deployments on the lab workstations configure everything through the
    process environment, so the file is optional.
    """
    path = Path(dotenv_path)
    if not path.exists():
        return {}
    return dict(dotenv_values(path))


def environ_overrides(keys: list[str], prefix: str = "COURIER_") -> dict[str, str]:
    """Pick ``prefix + key`` variables from the process environment."""
    return {key: os.environ[prefix + key] for key in keys if prefix + key in os.environ}
