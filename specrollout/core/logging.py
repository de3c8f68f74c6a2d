"""Structured logging for specrollout.

Library modules either log through ``logging.getLogger(__name__)`` or emit
structlog events through ``get_logger``. ``configure_logging`` routes both
through one structlog pipeline, so every line carries the same fields:
timestamp, level, logger name, the evaluation's correlation id and any
context bound with ``bind_context``.

``create_engine`` applies the ``logging`` settings section unless
``logging.configure`` is disabled, in which case the host owns the root
logger.

Example:
    configure_logging(level="DEBUG", json_output=True)

    with correlation_context("tick-42"), bind_context(target="billing.charge.v2"):
        get_logger(__name__).info("rollout_advanced", to_stage=1)
"""

import logging
import socket
import sys
import uuid
from contextvars import ContextVar, Token
from functools import lru_cache
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from specrollout.core.settings import RolloutSettings, get_cached_settings

SPECROLLOUT_VERSION = "0.1.0"

_correlation_id: ContextVar[str | None] = ContextVar(
    "specrollout_correlation_id", default=None
)
_bound_context: ContextVar[dict[str, Any]] = ContextVar(
    "specrollout_bound_context", default={}
)


def generate_correlation_id() -> str:
    """Return a new UUID4 correlation id."""
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


class correlation_context:
    """Scope a correlation id to a block, sync or async.

    Without an explicit id a fresh one is generated. The previous id is
    restored on exit.
    """

    def __init__(self, correlation_id: str | None = None) -> None:
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token: Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args: object) -> None:
        if self._token is not None:
            _correlation_id.reset(self._token)
            self._token = None

    async def __aenter__(self) -> str:
        return self.__enter__()

    async def __aexit__(self, *args: object) -> None:
        self.__exit__(*args)


class bind_context:
    """Attach key/value pairs to every log line emitted inside the block.

    Nested blocks extend the outer context; explicit event fields win over
    bound ones.
    """

    def __init__(self, **values: Any) -> None:
        self.values = values
        self._token: Token[dict[str, Any]] | None = None

    def __enter__(self) -> "bind_context":
        self._token = _bound_context.set({**_bound_context.get(), **self.values})
        return self

    def __exit__(self, *args: object) -> None:
        if self._token is not None:
            _bound_context.reset(self._token)
            self._token = None


# Processors


def add_correlation_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_bound_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in _bound_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


@lru_cache(maxsize=1)
def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def add_common_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("specrollout_version", SPECROLLOUT_VERSION)
    event_dict.setdefault("hostname", _hostname())
    return event_dict


def _pre_chain() -> list[Processor]:
    """Processors shared by structlog events and foreign stdlib records."""
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_correlation_id,
        add_bound_context,
        add_common_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def configure_logging(
    level: str | int = logging.INFO,
    json_output: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install structlog rendering on the root logger.

    Replaces any handlers already attached to the root logger.

    Args:
        level: Root log level, as a name or number.
        json_output: Render JSON lines. None picks JSON when stdout is not
            a TTY and colored console output otherwise.
        log_file: Also write rendered lines to this file.
    """
    if json_output is None:
        json_output = not sys.stdout.isatty()
    numeric_level = _level_number(level)
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    _remove_handlers(root_logger)
    root_logger.setLevel(numeric_level)
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def configure_logging_from_settings(settings: RolloutSettings | None = None) -> None:
    """Apply the ``logging`` section of the given or cached settings."""
    settings = settings or get_cached_settings()

    configure_logging(
        level=settings.logging.level,
        json_output=settings.logging.json_output,
        log_file=settings.logging.file,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, e.g. ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def _remove_handlers(root_logger: logging.Logger) -> None:
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()


def reset_logging() -> None:
    """Drop specrollout's logging setup and context. Used between tests."""
    _correlation_id.set(None)
    _bound_context.set({})
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)
    _remove_handlers(root_logger)
