"""
whylson.schemas - Data structures shared by the registry, compiler and views.

ContractEntry -> CompileOptions -> CompilationResult

Lifecycle:
1. ContractEntry: persisted record in .whylson/contracts.json linking a ligo
   document to its Michelson artifact and compile options
2. CompileOptions: what a single ligo invocation is asked to do (entrypoint,
   optional output file, ordered flags)
3. CompilationResult: transient outcome of one invocation, consumed
   immediately by the context and never persisted
"""

from .contract_entry import (
    ContractEntry,
    DEFAULT_FLAGS,
    ENTRYPOINT_PATTERN,
    is_valid_entrypoint,
)
from .compilation import (
    CompileOptions,
    CompilationResult,
    CompileSuccess,
    CompileFailure,
    ToolMissing,
)

__all__ = [
    # Contract entry
    "ContractEntry",
    "DEFAULT_FLAGS",
    "ENTRYPOINT_PATTERN",
    "is_valid_entrypoint",
    # Compilation
    "CompileOptions",
    "CompilationResult",
    "CompileSuccess",
    "CompileFailure",
    "ToolMissing",
]
