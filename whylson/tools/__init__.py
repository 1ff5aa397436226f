"""Adapters for external tools invoked by whylson."""

from .base import ToolAdapter, ToolRun
from .ligo import LigoAdapter

__all__ = ["ToolAdapter", "ToolRun", "LigoAdapter"]
