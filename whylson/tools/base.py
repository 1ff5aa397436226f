"""Base class for tool adapters."""

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ToolRun:
    """Captured outcome of one external process run."""
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ToolAdapter(ABC):
    """
    Base class for tool adapters.

    Tool adapters provide a standardized interface for whylson to interact with
    external executables (ligo today). Each adapter handles discovery,
    validation, and execution for its specific tool, and never interprets
    the tool's output beyond capturing it.
    """

    def __init__(self, binary: str):
        """
        Initialize the tool adapter.

        Args:
            binary: Executable name (looked up on PATH) or absolute path
        """
        self.binary = binary

    def resolve(self) -> Optional[str]:
        """
        Locate the executable.

        Returns:
            Absolute path of the executable, or None if not found
        """
        return shutil.which(self.binary)

    @abstractmethod
    def validate(self) -> Dict[str, Any]:
        """
        Validate the tool's installation.

        Returns:
            Dictionary with keys:
                - 'valid': bool indicating if validation passed
                - 'errors': list of error messages (empty if valid)
                - 'warnings': list of warning messages (optional)
        """
        pass

    @abstractmethod
    async def execute(self, *args: str, **kwargs) -> ToolRun:
        """
        Execute a tool command.

        Args:
            *args: Arguments passed after the executable
            **kwargs: Adapter-specific options

        Returns:
            ToolRun with the exit code and captured output

        Raises:
            LigoNotFound: If the executable does not exist
            OSError: If the process could not be started
        """
        pass
