"""
whylson - Keeps ligo contracts and their compiled Michelson in sync

Tracks ligo documents in .whylson/contracts.json, compiles them with the
ligo toolchain and renders read-only Michelson previews beside the source.
"""

__version__ = "0.1.0"


__all__ = ["WhylsonConfig", "load_config", "get_whylson_home"]

from .config import WhylsonConfig, load_config, get_whylson_home
