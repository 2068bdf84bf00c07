"""switchboard: pattern-based command routing for Signal chat bots."""

from .bot import Bot
from .command import Command, CommandOptions
from .config import BotConfig, PairingConfig, QRCodeConfig, Scope, Settings, get_settings
from .context import Context, ErrorEvent, ResponseMeta
from .exceptions import ConfigurationError, HandlerError, Issue, SwitchboardError, ValidationError
from .message import InboundMessage, Message
from .middleware import MiddlewareEngine
from .schema import UNSET, Schema, formats, t

__version__ = "0.1.0"

__all__ = [
    "Bot",
    "BotConfig",
    "Command",
    "CommandOptions",
    "ConfigurationError",
    "Context",
    "ErrorEvent",
    "HandlerError",
    "InboundMessage",
    "Issue",
    "Message",
    "MiddlewareEngine",
    "PairingConfig",
    "QRCodeConfig",
    "ResponseMeta",
    "Schema",
    "Scope",
    "Settings",
    "SwitchboardError",
    "UNSET",
    "ValidationError",
    "formats",
    "get_settings",
    "t",
]
