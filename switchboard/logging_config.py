"""Logging configuration for switchboard.

structlog renders through stdlib logging: a console handler on the root
logger and one rotating ``switchboard.log`` file. Levels can be moved
per subsystem (``router``, ``transport``, ``plugins``) without adding
handlers.

Each dispatch binds ``chat`` and, once a command matches, ``pattern``
into structlog's context variables (see ``dispatch_context``), so every
event logged while a message is handled says which conversation and
command it belongs to. Masking runs after the merge, so a bound chat
that is a phone number is masked like any other field.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

SUBSYSTEMS = ("router", "transport", "plugins")

LOGGER_PREFIX = "switchboard"

# E.164 phone numbers (+1234567890, 7-15 digits)
_PHONE_PATTERN = re.compile(r"\+\d{7,15}")


def _mask_value(value: str) -> str:
    return _PHONE_PATTERN.sub(lambda m: "..." + m.group(0)[-4:], value)


def mask_phone_numbers(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor masking full phone numbers to their last 4 digits."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _mask_value(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _mask_value(v) if isinstance(v, str) else v for v in value
            )
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _mask_value(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


def dispatch_context(chat: Optional[str], pattern: Optional[str] = None):
    """Bind the chat (and matched pattern) of one dispatch to its log events.

    Returns a context manager; the bindings are dropped on exit. Each
    transport task runs in its own contextvars copy, so concurrent
    dispatches do not see each other's bindings.
    """
    bindings = {"chat": chat}
    if pattern is not None:
        bindings["pattern"] = pattern
    return structlog.contextvars.bound_contextvars(**bindings)


SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    mask_phone_numbers,
]


def _formatter(colors: bool) -> structlog.stdlib.ProcessorFormatter:
    # foreign_pre_chain covers records from aiohttp and other stdlib loggers
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    level = getattr(logging, str(name).upper(), None)
    return level if isinstance(level, int) else default


def _open_log_file(log_dir: Path, max_bytes: int, backup_count: int):
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        return None
    return logging.handlers.RotatingFileHandler(
        log_dir / f"{LOGGER_PREFIX}.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


def setup_logging(settings=None) -> None:
    """Configure structlog, the console handler and the log file.

    Args:
        settings: Optional Settings instance. Without it, defaults are
            used and loggers are not cached, so a second call with real
            settings takes effect.
    """
    if settings is not None:
        log_dir = settings.log_dir
        root_level = _level(settings.logging_level, logging.INFO)
        subsystem_levels = settings.logging_subsystem_levels
        max_bytes = settings.logging_max_file_size_mb * 1024 * 1024
        backup_count = settings.logging_backup_count
        cache_loggers = True
    else:
        log_dir = Path(__file__).parent.parent / "logs"
        root_level = logging.INFO
        subsystem_levels = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5
        cache_loggers = False

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_formatter(colors=sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    sb_logger = logging.getLogger(LOGGER_PREFIX)
    sb_logger.setLevel(root_level)
    sb_logger.handlers.clear()
    file_handler = _open_log_file(log_dir, max_bytes, backup_count)
    if file_handler is not None:
        file_handler.setFormatter(_formatter(colors=False))
        sb_logger.addHandler(file_handler)

    # Unset subsystems inherit the switchboard level
    for subsystem in SUBSYSTEMS:
        logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}").setLevel(
            _level(subsystem_levels.get(subsystem), logging.NOTSET)
        )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )
