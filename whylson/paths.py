"""
Path conventions for whylson.

Maps a ligo document to its compiled Michelson artifact and describes the
project-local .whylson layout:

    <project>/.whylson/contracts.json
    <project>/.whylson/bin-contracts/<stem>.tz

Everything here is pure: no filesystem access.
"""

from dataclasses import dataclass
from pathlib import Path


DOT_WHYLSON = ".whylson"
CONTRACTS_JSON = "contracts.json"
BIN_CONTRACTS = "bin-contracts"
MICHELSON_SUFFIX = ".tz"

# ligo dialects: PascaLIGO, CameLIGO, JsLIGO, ReasonLIGO
LIGO_SUFFIXES = frozenset({".ligo", ".mligo", ".jsligo", ".religo"})


def contract_title(source: Path | str) -> str:
    """Filename of a ligo document up to its first dot."""
    return Path(source).name.split(".")[0]


def michelson_of_ligo(source: Path | str, bin_dir: Path | str) -> Path:
    """
    Build the Michelson artifact path for a ligo document.

    The extension is dropped (everything from the first dot of the filename),
    ".tz" is appended and the file is placed in bin_dir. Documents that share
    a stem map to the same artifact.

    Args:
        source: Path to the ligo document
        bin_dir: The bin-contracts directory

    Returns:
        Path to the .tz artifact
    """
    return Path(bin_dir) / f"{contract_title(source)}{MICHELSON_SUFFIX}"


def is_ligo_file(path: Path | str) -> bool:
    """Check whether a path names a ligo document."""
    return Path(path).suffix.lower() in LIGO_SUFFIXES


@dataclass(frozen=True)
class WhylsonPaths:
    """The .whylson layout rooted at a workspace folder."""
    root: Path

    @property
    def dot_whylson(self) -> Path:
        return self.root / DOT_WHYLSON

    @property
    def contracts_json(self) -> Path:
        return self.dot_whylson / CONTRACTS_JSON

    @property
    def bin_contracts(self) -> Path:
        return self.dot_whylson / BIN_CONTRACTS

    def michelson_of_ligo(self, source: Path | str) -> Path:
        return michelson_of_ligo(source, self.bin_contracts)
