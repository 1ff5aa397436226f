"""ligo tool adapter for whylson."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from whylson.errors import LigoNotFound
from whylson.tools.base import ToolAdapter, ToolRun

logger = logging.getLogger(__name__)


class LigoAdapter(ToolAdapter):
    """
    Adapter for the ligo compiler.

    Runs ligo as a subprocess on the event loop; stdout and stderr are
    captured and decoded as UTF-8.
    """

    def __init__(self, binary: str = "ligo", cwd: Optional[Path] = None):
        """
        Initialize LigoAdapter.

        Args:
            binary: ligo executable name or path
            cwd: Working directory for ligo runs (defaults to the current one)
        """
        super().__init__(binary)
        self.cwd = cwd

    def validate(self) -> Dict[str, Any]:
        """
        Validate ligo setup.

        Returns:
            Dict with 'valid': bool, 'errors': list
        """
        errors = []
        if self.resolve() is None:
            errors.append(f"ligo executable not found: {self.binary}")
        return {"valid": len(errors) == 0, "errors": errors}

    def compile_contract_args(
        self,
        source: Path,
        entrypoint: str,
        output_file: Optional[Path] = None,
        flags: tuple[str, ...] = (),
    ) -> list[str]:
        """
        Build the argument list for `ligo compile contract`.

        Args:
            source: ligo document to compile
            entrypoint: Entrypoint symbol
            output_file: Write the Michelson here instead of stdout
            flags: Extra flags, kept in order

        Returns:
            Arguments to pass after the executable
        """
        args = ["compile", "contract", str(source), "--entrypoint", entrypoint]
        if output_file is not None:
            args += ["--output-file", str(output_file)]
        args += list(flags)
        return args

    async def execute(self, *args: str, **kwargs) -> ToolRun:
        """
        Run ligo with the given arguments.

        Returns:
            ToolRun (a non-zero exit code is returned, not raised)

        Raises:
            LigoNotFound: If the executable does not exist
        """
        command = (self.binary, *args)
        logger.debug(f"Running {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise LigoNotFound(f"ligo executable not found: {self.binary}") from e

        stdout, stderr = await proc.communicate()
        return ToolRun(
            command=command,
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
