"""Source storage for uploaded files, addressed by storage reference."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from support_agent.errors import ExtractionError, ValidationError


class SourceStore(Protocol):
    """Fetches the raw bytes of an uploaded file."""

    def fetch(self, storage_ref: str) -> bytes:
        """Return the stored bytes for `storage_ref`."""


class LocalSourceStore:
    """Reads uploads from a directory on local disk.

    Storage references are relative paths under `root`; references that
    resolve outside of it are rejected.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, storage_ref: str) -> Path:
        path = (self.root / storage_ref).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValidationError(f"Storage reference escapes upload root: {storage_ref}")
        return path

    def fetch(self, storage_ref: str) -> bytes:
        path = self.resolve(storage_ref)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ExtractionError(f"Could not read stored file {storage_ref}: {exc}") from exc

    def save(self, storage_ref: str, data: bytes) -> Path:
        path = self.resolve(storage_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path
