"""Filesystem helpers for the JSON keyring."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, cast
from uuid import uuid4

from approvalgate.errors import KeyRegistryError

KEYRING_FILE_VERSION = 1


def read_keyring_entries(path: Path) -> list[dict[str, Any]]:
    """Return raw keyring entries, or an empty list when the file is absent."""
    if not path.exists():
        return []
    data = read_json_file(path)
    version = data.get("version")
    if version != KEYRING_FILE_VERSION:
        raise KeyRegistryError("keyring_version", f"Unsupported keyring version in {path}.")
    entries = data.get("keys")
    if not isinstance(entries, list):
        raise KeyRegistryError("keyring_invalid", f"Keyring file is invalid: {path}")
    items = cast(list[Any], entries)
    if not all(isinstance(item, dict) for item in items):
        raise KeyRegistryError("keyring_invalid", f"Keyring entry is invalid: {path}")
    return cast(list[dict[str, Any]], items)


def write_keyring_entries(path: Path, entries: list[dict[str, Any]]) -> None:
    write_json_file(path, {"version": KEYRING_FILE_VERSION, "keys": entries})


def read_json_file(path: Path) -> dict[str, Any]:
    """Read and validate a JSON object from disk."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise KeyRegistryError("keyring_invalid", f"Invalid JSON file: {path}") from exc
    if not isinstance(data, dict):
        raise KeyRegistryError("keyring_invalid", f"Invalid JSON object in file: {path}")
    return cast(dict[str, Any], data)


def write_json_file(path: Path, payload: dict[str, Any], *, file_mode: int = 0o644) -> None:
    """Atomically write JSON content to disk with explicit mode bits."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
    encoded = json.dumps(payload, indent=2, ensure_ascii=True).encode("utf-8")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, file_mode)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(encoded)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
        os.chmod(path, file_mode)
    finally:
        if temp_path.exists():
            temp_path.unlink()
