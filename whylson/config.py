"""
Configuration management for whylson.

Loads and validates the whylson config.yaml (editor-level settings):

    auto_save: true
    auto_save_threshold: 0.75
    on_save_background_compilation: true
    on_save_actions:
      create_entry: false
      open_view: false
    show_output_messages: true
    ligo_binary: ligo
    default_flags: ["--michelson-comments", "location"]
    logging:
      level: INFO
      format: pretty
      file: null
    env_file: null
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from whylson.schemas import DEFAULT_FLAGS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_whylson_home() -> Path:
    """Directory holding config.yaml ($WHYLSON_HOME or ~/.config/whylson)."""
    custom = os.environ.get("WHYLSON_HOME")
    if custom:
        return Path(custom).expanduser()
    return Path("~/.config/whylson").expanduser()


@dataclass
class OnSaveActions:
    """What saving an unregistered/undisplayed ligo document may trigger."""
    create_entry: bool = False
    open_view: bool = False


@dataclass
class WhylsonConfig:
    """Complete whylson configuration."""
    auto_save: bool = True
    auto_save_threshold: float = 0.75
    on_save_background_compilation: bool = True
    on_save_actions: OnSaveActions = field(default_factory=OnSaveActions)
    show_output_messages: bool = True
    ligo_binary: str = "ligo"
    default_flags: List[str] = field(default_factory=lambda: list(DEFAULT_FLAGS))
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def validate(self) -> None:
        """Validate configuration values."""
        if isinstance(self.auto_save_threshold, bool) or not isinstance(
            self.auto_save_threshold, (int, float)
        ):
            raise ConfigError(
                f"auto_save_threshold must be a number, got {self.auto_save_threshold!r}"
            )
        if self.auto_save_threshold <= 0:
            raise ConfigError(
                f"auto_save_threshold must be positive, got {self.auto_save_threshold}"
            )
        if not self.ligo_binary:
            raise ConfigError("ligo_binary must not be empty")
        if not isinstance(self.default_flags, list):
            raise ConfigError(f"default_flags must be a list, got {self.default_flags!r}")
        if not all(isinstance(f, str) for f in self.default_flags):
            raise ConfigError(f"default_flags must be strings: {self.default_flags!r}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if self.log_format not in ("structured", "pretty"):
            raise ConfigError(f"log_format must be 'structured' or 'pretty', got {self.log_format!r}")

    def get_log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WhylsonConfig":
        """
        Build a config from the parsed YAML mapping.

        Raises:
            ConfigError: If the mapping has the wrong shape or invalid values
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")

        actions = data.get("on_save_actions") or {}
        if not isinstance(actions, dict):
            raise ConfigError("on_save_actions must be a mapping")
        logging_cfg = data.get("logging") or {}
        if not isinstance(logging_cfg, dict):
            raise ConfigError("logging must be a mapping")

        defaults = cls()
        config = cls(
            auto_save=bool(data.get("auto_save", defaults.auto_save)),
            auto_save_threshold=data.get("auto_save_threshold", defaults.auto_save_threshold),
            on_save_background_compilation=bool(
                data.get("on_save_background_compilation", defaults.on_save_background_compilation)
            ),
            on_save_actions=OnSaveActions(
                create_entry=bool(actions.get("create_entry", False)),
                open_view=bool(actions.get("open_view", False)),
            ),
            show_output_messages=bool(data.get("show_output_messages", defaults.show_output_messages)),
            ligo_binary=data.get("ligo_binary", defaults.ligo_binary),
            default_flags=data.get("default_flags", defaults.default_flags),
            log_level=str(logging_cfg.get("level", defaults.log_level)).upper(),
            log_format=logging_cfg.get("format", defaults.log_format),
            log_file=logging_cfg.get("file"),
            env_file=data.get("env_file"),
        )
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the config.yaml shape."""
        return {
            "auto_save": self.auto_save,
            "auto_save_threshold": self.auto_save_threshold,
            "on_save_background_compilation": self.on_save_background_compilation,
            "on_save_actions": {
                "create_entry": self.on_save_actions.create_entry,
                "open_view": self.on_save_actions.open_view,
            },
            "show_output_messages": self.show_output_messages,
            "ligo_binary": self.ligo_binary,
            "default_flags": list(self.default_flags),
            "logging": {
                "level": self.log_level,
                "format": self.log_format,
                "file": self.log_file,
            },
            "env_file": self.env_file,
        }


def load_config(config_path: Optional[Path] = None) -> WhylsonConfig:
    """
    Load whylson configuration from YAML file.

    A missing file yields the defaults. If the config names an env_file it is
    loaded into the process environment.

    Args:
        config_path: Path to config file. Defaults to <whylson home>/config.yaml

    Returns:
        WhylsonConfig instance

    Raises:
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_whylson_home() / "config.yaml"

    if not config_path.exists():
        return WhylsonConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    config = WhylsonConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
