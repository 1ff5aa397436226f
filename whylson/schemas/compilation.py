"""
Compilation schemas - what ligo is asked to do and what came back.

CompilationResult is a tagged union of three variants:
- CompileSuccess: ligo exited 0; `text` is the Michelson it printed
- CompileFailure: ligo exited non-zero or could not run; `diagnostic`
  is already wrapped as Michelson comments
- ToolMissing: the ligo executable was not found

Callers dispatch on the variant with isinstance() and handle all three.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union


@dataclass(frozen=True)
class CompileOptions:
    """
    Options for a single ligo invocation.

    Attributes:
        entrypoint: Entrypoint symbol of the contract
        on_path: Output file. None means preview mode: the artifact is
            printed on stdout and nothing is written to disk
        flags: Extra ligo flags, in order
    """
    entrypoint: str
    on_path: Optional[Path] = None
    flags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def preview(self) -> bool:
        return self.on_path is None


@dataclass(frozen=True)
class CompileSuccess:
    text: str
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class CompileFailure:
    diagnostic: str
    command: tuple[str, ...] = ()
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class ToolMissing:
    binary: str
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False

    @property
    def diagnostic(self) -> str:
        return f"# ligo executable not found: {self.binary}"


CompilationResult = Union[CompileSuccess, CompileFailure, ToolMissing]
