"""Configuration for switchboard.

Two layers:

    BotConfig   per-Bot options (scope, prefix, help, pairing). Frozen;
                invalid values raise ConfigurationError immediately.
    Settings    process-level settings loaded from settings.yaml and
                .env in a config directory (Signal API, plugins, logging).

Key functions:
    get_settings: Singleton accessor for the global Settings instance.
"""

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic
import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import ConfigurationError

logger = structlog.get_logger("switchboard.router")


class Scope(str, Enum):
    """How far a hook registration propagates through the Bot tree."""
    LOCAL = "local"      # this Bot only
    SCOPED = "scoped"    # this Bot and its direct parent
    GLOBAL = "global"    # every Bot in the tree


HOOK_NAMES = ("pairing", "request", "parse", "transform", "after_response")

_PHONE_RE = re.compile(r"^\+?\d+$")


class PairingConfig(BaseModel):
    """Link this bot as a secondary device of an existing account."""

    model_config = ConfigDict(frozen=True)

    number: str = Field(..., description="Account number, digits with optional leading +")
    device_name: str = "switchboard"

    @field_validator("number")
    @classmethod
    def _check_number(cls, value: str) -> str:
        if not _PHONE_RE.match(value):
            raise ValueError("Expected valid number for `pairing.number`")
        return value


class QRCodeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    small: bool = True
    timeout: int = Field(default=60_000, description="Milliseconds before the link expires")


class BotConfig(BaseModel):
    """Immutable per-Bot configuration.

    Raises:
        ConfigurationError: For an unknown scope, a malformed pairing
            block, or pairing and qrcode set together.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    scope: Scope = Scope.LOCAL
    prefix: Any = ""
    description: str = ""
    enable_help: bool = False
    pairing: Optional[PairingConfig] = None
    qrcode: Optional[QRCodeConfig] = None
    transport_options: Dict[str, Any] = Field(default_factory=dict)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            setting = ".".join(str(p) for p in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid bot config: {first.get('msg')}",
                setting_name=setting or None,
            ) from None

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: Any) -> Any:
        if value is None:
            return ""
        if not isinstance(value, (str, re.Pattern)):
            raise ValueError("prefix must be a string or compiled regex")
        return value

    @model_validator(mode="after")
    def _check_login_method(self) -> "BotConfig":
        if self.pairing is not None and self.qrcode is not None:
            raise ValueError("Cannot set `qrcode` when `pairing` is set")
        return self

    def with_scope(self, scope: Any) -> "BotConfig":
        """Return a copy with a different scope."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data["scope"] = scope
        return BotConfig(**data)


class Settings:
    """Process-level settings manager.

    Loads settings.yaml and .env from the config directory. Environment
    variables take precedence over YAML values.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigurationError(
                    f"{filename} must contain a mapping",
                    setting_name=filename,
                )
            return data
        return {}

    @property
    def signal_api_url(self) -> str:
        """signal-cli REST API URL. Env var SIGNAL_API_URL takes precedence."""
        return (
            os.environ.get("SIGNAL_API_URL")
            or self.settings.get("signal_api_url", "http://127.0.0.1:8080")
        ).rstrip("/")

    @property
    def account(self) -> Optional[str]:
        """Registered account number. Env var SIGNAL_ACCOUNT takes precedence."""
        return os.environ.get("SIGNAL_ACCOUNT") or self.settings.get("account")

    @property
    def plugins_dir(self) -> Path:
        configured = self.settings.get("plugins_dir")
        if configured:
            return Path(configured).expanduser()
        return self.config_dir.parent / "plugins"

    @property
    def plugin_allowlist(self) -> Optional[List[str]]:
        """Plugins allowed to load, or None for all."""
        allowlist = self.settings.get("plugin_allowlist")
        if allowlist is not None and not isinstance(allowlist, list):
            logger.error("plugin_allowlist_invalid_type", type=type(allowlist).__name__)
            return None
        return allowlist

    @property
    def plugin_settings(self) -> Dict[str, dict]:
        return self.settings.get("plugins", {}) or {}

    @property
    def log_dir(self) -> Path:
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return self.config_dir.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO)."""
        return self.settings.get("logging", {}).get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem overrides, e.g. {"transport": "DEBUG"}."""
        return self.settings.get("logging", {}).get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        return self.settings.get("logging", {}).get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        return self.settings.get("logging", {}).get("backup_count", 5)

    @property
    def bot_config(self) -> BotConfig:
        """BotConfig built from the ``bot:`` section."""
        section = self.settings.get("bot", {}) or {}
        if not isinstance(section, dict):
            raise ConfigurationError("`bot` section must be a mapping", setting_name="bot")
        return BotConfig(**section)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
