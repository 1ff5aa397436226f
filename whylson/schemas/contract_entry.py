"""
ContractEntry schema - one record of .whylson/contracts.json.

A ContractEntry links a ligo document to its compiled Michelson artifact and
carries the options used to compile it. Entries are only ever replaced as a
whole; there are no partial field updates.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from whylson.paths import contract_title


# Entrypoint names accepted by the prompt and by contracts.json
ENTRYPOINT_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_']*$")

# Flags given to new entries; order matters because flags take arguments
DEFAULT_FLAGS: tuple[str, ...] = ("--michelson-comments", "location")


def is_valid_entrypoint(value: Optional[str]) -> bool:
    """Check a candidate entrypoint against the identifier grammar."""
    if not isinstance(value, str):
        return False
    return ENTRYPOINT_PATTERN.match(value) is not None


@dataclass(frozen=True)
class ContractEntry:
    """
    A tracked ligo contract.

    Attributes:
        title: Display name, the source filename up to its first dot
        source: Absolute POSIX path of the ligo document (unique in the registry)
        on_path: Absolute POSIX path of the compiled .tz artifact
        entrypoint: Entrypoint symbol passed to ligo
        flags: Ordered ligo flags, positional arguments kept in place
    """
    title: str
    source: str
    on_path: str
    entrypoint: str
    flags: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.source:
            raise ValueError("ContractEntry.source must not be empty")
        if not self.on_path:
            raise ValueError("ContractEntry.onPath must not be empty")
        if not is_valid_entrypoint(self.entrypoint):
            raise ValueError(f"Invalid entrypoint: {self.entrypoint!r}")
        if not all(isinstance(flag, str) for flag in self.flags):
            raise ValueError(f"Flags must be strings: {self.flags!r}")

    @classmethod
    def create(
        cls,
        source: Path,
        on_path: Path,
        entrypoint: str,
        flags: Optional[tuple[str, ...] | list[str]] = None,
    ) -> "ContractEntry":
        """Build a new entry for a ligo document, deriving its title."""
        return cls(
            title=contract_title(source),
            source=source.as_posix(),
            on_path=on_path.as_posix(),
            entrypoint=entrypoint,
            flags=tuple(DEFAULT_FLAGS if flags is None else flags),
        )

    @property
    def source_path(self) -> Path:
        return Path(self.source)

    @property
    def artifact_path(self) -> Path:
        return Path(self.on_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the contracts.json record shape."""
        return {
            "title": self.title,
            "source": self.source,
            "onPath": self.on_path,
            "entrypoint": self.entrypoint,
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContractEntry":
        """
        Create from a contracts.json record.

        Raises:
            ValueError: If a field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ValueError(f"Contract entry must be an object, got {type(data).__name__}")

        missing = [k for k in ("source", "onPath", "entrypoint") if k not in data]
        if missing:
            raise ValueError(f"Contract entry missing fields: {', '.join(missing)}")

        flags = data.get("flags", [])
        if not isinstance(flags, list):
            raise ValueError(f"Contract entry flags must be a list, got {type(flags).__name__}")

        for key in ("title", "source", "onPath", "entrypoint"):
            if key in data and not isinstance(data[key], str):
                raise ValueError(f"Contract entry {key} must be a string, got {type(data[key]).__name__}")

        source = data["source"]
        return cls(
            title=data.get("title") or contract_title(Path(source)),
            source=source,
            on_path=data["onPath"],
            entrypoint=data["entrypoint"],
            flags=tuple(flags),
        )
