"""
Compiler - Turn a ligo document + CompileOptions into a CompilationResult.

The compiler runs exactly one `ligo compile contract` per call:
- on_path set: ligo writes the Michelson artifact to that file
- on_path omitted: preview mode, the Michelson text comes back on stdout
  and nothing touches the disk

Failures are values here, not exceptions: the context decides whether a
failure means rollback (first compilation) or just a report (background).
Diagnostics are wrapped as Michelson comments so they can be shown inside
a Michelson preview without breaking its highlighting.
"""

import logging
from pathlib import Path

from whylson.errors import LigoNotFound
from whylson.schemas import (
    CompilationResult,
    CompileFailure,
    CompileOptions,
    CompileSuccess,
    ContractEntry,
    ToolMissing,
)
from whylson.tools.ligo import LigoAdapter

logger = logging.getLogger(__name__)


COMMENT_PREFIX = "# "


def as_michelson_comment(text: str) -> str:
    """
    Prefix every line of a diagnostic with a Michelson comment marker.

    Args:
        text: Raw diagnostic text

    Returns:
        The commented text (empty lines become a bare "#")
    """
    lines = text.rstrip("\n").splitlines() or [""]
    return "\n".join((COMMENT_PREFIX + line).rstrip() for line in lines)


def options_for(entry: ContractEntry, persist: bool) -> CompileOptions:
    """
    CompileOptions for a registered contract.

    Args:
        entry: The registered contract
        persist: Write to entry.on_path (True) or preview only (False)
    """
    return CompileOptions(
        entrypoint=entry.entrypoint,
        on_path=entry.artifact_path if persist else None,
        flags=entry.flags,
    )


class LigoCompiler:
    """
    Compiler adapter over the ligo executable.

    Usage:
        compiler = LigoCompiler(LigoAdapter("ligo"))
        result = await compiler.compile(Path("counter.mligo"), CompileOptions("main"))
        if isinstance(result, CompileSuccess):
            print(result.text)
    """

    def __init__(self, adapter: LigoAdapter):
        """
        Initialize the compiler.

        Args:
            adapter: LigoAdapter used to run the process
        """
        self._adapter = adapter

    @property
    def binary(self) -> str:
        return self._adapter.binary

    def verify_binary(self) -> bool:
        """Check that the ligo executable is installed."""
        validation = self._adapter.validate()
        for error in validation["errors"]:
            logger.warning(error)
        return validation["valid"]

    async def compile(self, source: Path, options: CompileOptions) -> CompilationResult:
        """
        Compile a ligo document once.

        Args:
            source: Path to the ligo document
            options: Entrypoint, optional output file and flags

        Returns:
            CompileSuccess, CompileFailure or ToolMissing
        """
        args = self._adapter.compile_contract_args(
            source,
            options.entrypoint,
            output_file=options.on_path,
            flags=options.flags,
        )
        command = (self._adapter.binary, *args)

        try:
            run = await self._adapter.execute(*args)
        except LigoNotFound:
            logger.error(f"ligo executable not found: {self._adapter.binary}")
            return ToolMissing(binary=self._adapter.binary, command=command)
        except OSError as e:
            logger.error(f"Failed to start ligo for {source}: {e}")
            return CompileFailure(diagnostic=as_michelson_comment(str(e)), command=command)

        if run.ok:
            mode = "preview" if options.preview else f"-> {options.on_path}"
            logger.debug(f"Compiled {source} ({mode})")
            return CompileSuccess(text=run.stdout, command=command)

        raw = run.stderr.strip() or run.stdout.strip() or f"ligo exited with code {run.returncode}"
        logger.info(
            f"Compilation of {source} failed with exit code {run.returncode}",
            extra={"event": "compile_failed", "metadata": {"command": list(command)}},
        )
        return CompileFailure(
            diagnostic=as_michelson_comment(raw),
            command=command,
            returncode=run.returncode,
        )
