"""
ContractRegistry - Persist ContractEntries in .whylson/contracts.json.

The registry provides:
- Loading entries from the JSON registry file into an in-memory mirror
- Atomic saves (temporary file + os.replace)
- Lookup by ligo source path
- Upsert/remove with "last write wins" semantics and unique sources
- Content-addressed detection of its own writes, so file-watcher reloads
  only pick up changes made outside this process

The mirror leads: after a successful local write it is authoritative, and
watcher-triggered reloads are advisory refreshes for external edits only.
All mutations are serialised through one asyncio.Lock.
"""

import asyncio
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Optional

from whylson.errors import RegistryCorrupt, RegistryWriteFailed
from whylson.schemas import ContractEntry

logger = logging.getLogger(__name__)


class ContractRegistry:
    """
    Registry of tracked contracts backed by a JSON file.

    Example file contents:
        [
          {
            "title": "counter",
            "source": "/project/src/counter.mligo",
            "onPath": "/project/.whylson/bin-contracts/counter.tz",
            "entrypoint": "main",
            "flags": ["--michelson-comments", "location"]
          }
        ]
    """

    def __init__(self, registry_path: Path | str):
        """
        Initialize the registry.

        Args:
            registry_path: Path to contracts.json
        """
        self._path = Path(registry_path)
        self._entries: list[ContractEntry] = []
        self._lock = asyncio.Lock()
        self._last_written_digest: Optional[str] = None

    @property
    def path(self) -> Path:
        """Get the registry file path."""
        return self._path

    @property
    def entries(self) -> list[ContractEntry]:
        """Snapshot of the in-memory mirror, in registration order."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def find(self, source: Path | str) -> Optional[ContractEntry]:
        """
        Find the entry for a ligo document.

        Args:
            source: Path to the ligo document

        Returns:
            The ContractEntry if registered, None otherwise
        """
        key = Path(source).as_posix()
        for entry in self._entries:
            if entry.source == key:
                return entry
        return None

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    async def load(self) -> list[ContractEntry]:
        """
        Load contracts.json into the mirror.

        A missing file is an empty registry. The file is never rewritten here.

        Returns:
            The loaded entries

        Raises:
            RegistryCorrupt: If the file cannot be parsed. The mirror is
                reset to empty before raising.
        """
        async with self._lock:
            return await self._load_locked()

    async def _load_locked(self) -> list[ContractEntry]:
        try:
            raw = await asyncio.to_thread(self._read_bytes)
        except FileNotFoundError:
            logger.debug(f"Registry not found at {self._path}, starting empty")
            self._entries = []
            return []
        except OSError as e:
            self._entries = []
            raise RegistryCorrupt(f"Failed to read {self._path}: {e}", self._path)

        try:
            self._entries = self._parse(raw)
        except ValueError as e:
            self._entries = []
            logger.warning(
                f"Registry {self._path} is corrupt: {e}",
                extra={"event": "registry_corrupt", "metadata": {"path": str(self._path)}},
            )
            raise RegistryCorrupt(f"Failed to parse {self._path}: {e}", self._path)

        logger.debug(f"Loaded {len(self._entries)} contract entries from {self._path}")
        return list(self._entries)

    async def save(self, entries: list[ContractEntry]) -> None:
        """
        Atomically overwrite contracts.json and update the mirror.

        Args:
            entries: The full, ordered list of entries to persist

        Raises:
            RegistryWriteFailed: On I/O error. The mirror is left unchanged.
        """
        async with self._lock:
            await self._save_locked(entries)

    async def _save_locked(self, entries: list[ContractEntry]) -> None:
        payload = self.serialize(entries)
        try:
            await asyncio.to_thread(self._atomic_write, payload)
        except OSError as e:
            logger.error(
                f"Failed to write {self._path}: {e}",
                extra={"event": "registry_write_failed", "metadata": {"path": str(self._path)}},
            )
            raise RegistryWriteFailed(f"Unable to write {self._path}: {e}", self._path)

        self._last_written_digest = self.compute_hash(payload)
        self._entries = list(entries)

    async def upsert(self, entry: ContractEntry) -> None:
        """
        Insert or replace the entry for entry.source and persist.

        Any existing entry with the same source is dropped and the new entry
        is appended, so the most recent upsert wins and sources stay unique.

        Raises:
            RegistryWriteFailed: If the file could not be written
        """
        async with self._lock:
            updated = [e for e in self._entries if e.source != entry.source]
            updated.append(entry)
            await self._save_locked(updated)
        logger.info(
            f"Registered contract {entry.title} ({entry.source})",
            extra={"event": "entry_upserted", "metadata": entry.to_dict()},
        )

    async def remove(self, source: Path | str) -> bool:
        """
        Remove the entry for a ligo document and persist.

        Args:
            source: Path to the ligo document

        Returns:
            True if an entry was removed, False if none matched

        Raises:
            RegistryWriteFailed: If the file could not be written
        """
        key = Path(source).as_posix()
        async with self._lock:
            remaining = [e for e in self._entries if e.source != key]
            if len(remaining) == len(self._entries):
                return False
            await self._save_locked(remaining)
        logger.info(
            f"Removed contract entry for {key}",
            extra={"event": "entry_removed", "metadata": {"source": key}},
        )
        return True

    async def reset(self) -> None:
        """
        Overwrite contracts.json with an empty registry.

        Raises:
            RegistryWriteFailed: If the file could not be written
        """
        async with self._lock:
            await asyncio.to_thread(self._path.parent.mkdir, parents=True, exist_ok=True)
            await self._save_locked([])
        logger.info(f"Reset contracts registry at {self._path}")

    async def reload_external(self) -> bool:
        """
        Reload the mirror after the file changed on disk.

        Called from the registry file watcher. Changes whose content matches
        this process's last write are ignored.

        Returns:
            True if the mirror was reloaded, False if the change was our own

        Raises:
            RegistryCorrupt: If the externally edited file cannot be parsed
        """
        async with self._lock:
            try:
                raw = await asyncio.to_thread(self._read_bytes)
            except FileNotFoundError:
                raw = None

            if raw is not None and self.compute_hash(raw) == self._last_written_digest:
                return False

            logger.info(f"Registry {self._path} changed externally, reloading")
            await self._load_locked()
            return True

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _read_bytes(self) -> bytes:
        return self._path.read_bytes()

    def _atomic_write(self, payload: bytes) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, self._path)

    @staticmethod
    def _parse(raw: bytes) -> list[ContractEntry]:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"invalid JSON: {e}")

        if not isinstance(data, list):
            raise ValueError(f"expected a JSON array, got {type(data).__name__}")

        entries: list[ContractEntry] = []
        seen: set[str] = set()
        for index, record in enumerate(data):
            try:
                entry = ContractEntry.from_dict(record)
            except ValueError as e:
                raise ValueError(f"entry {index}: {e}")
            # Hand-edited files may repeat a source; the later record wins
            if entry.source in seen:
                entries = [e for e in entries if e.source != entry.source]
            seen.add(entry.source)
            entries.append(entry)
        return entries

    @staticmethod
    def serialize(entries: list[ContractEntry]) -> bytes:
        """Render entries as the contracts.json payload."""
        return json.dumps([e.to_dict() for e in entries], indent=2).encode("utf-8")

    @staticmethod
    def compute_hash(payload: bytes) -> str:
        """
        Compute SHA256 hash of a registry payload.

        Used to recognise the process's own writes when the watcher fires.

        Args:
            payload: Raw file contents

        Returns:
            Hexadecimal SHA256 hash string
        """
        return hashlib.sha256(payload).hexdigest()
