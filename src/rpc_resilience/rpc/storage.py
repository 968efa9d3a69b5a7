"""Shared persistent tier for the TTL cache.

The shared tier plays the role browser ``localStorage`` plays for a web
dashboard: a slower key/value store that survives restarts and is visible
to every process pointing at the same location.
"""

import os
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote


class SharedStore(Protocol):
    """
    Minimal string key/value interface of the shared tier.

    Implementations may raise ``OSError`` (or any other exception) on
    failure; the cache treats every failure as "absent".

    """

    def get_item(self, key: str) -> str | None:
        """Return the stored string or None."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store a string under ``key``."""
        ...

    def remove_item(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    def keys(self) -> list[str]:
        """List all stored keys."""
        ...


class MemorySharedStore:
    """
    In-process shared store.

    Several caches constructed with the same instance share entries, which
    is enough for single-process applications and tests.

    """

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class FileSharedStore:
    """
    Directory-backed shared store, one JSON document per key.

    Used for cross-process reuse of public data (lottery stats, TVL...)
    so that separate processes do not each hit the RPC node.

    Parameters
    ----------
    directory : Path | str
        Directory holding the entries. Created if missing.

    """

    SUFFIX = ".json"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        # Percent-encoding is reversible, so distinct keys never share a file
        return self.directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.directory, suffix=".tmp", delete=False
        ) as tmp:
            tmp.write(value)
        try:
            # Atomic rename so concurrent readers never see a partial document
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        return [unquote(path.name[: -len(self.SUFFIX)]) for path in self.directory.glob(f"*{self.SUFFIX}")]
