from __future__ import annotations

import logging
import sys
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

if t.TYPE_CHECKING:
    from vkrelay.contexts import Context

LOGGER_NAME = "vkrelay"

LogFormat = t.Literal["console", "json"]


def _renderer(log_format: LogFormat) -> list[structlog.typing.Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    if log_format == "console":
        return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]
    raise ValueError(f"Unknown log format: {log_format!r}")


def setup_logging(
    level: int = logging.INFO,
    log_format: LogFormat = "console",
    stream: t.TextIO | None = None,
) -> None:
    """
    Route structlog through the stdlib ``vkrelay`` logger.

    Parameters
    ----------
    level : int, optional
        Level applied to the ``vkrelay`` logger.
    log_format : LogFormat, optional
        ``"console"`` for human readable lines, ``"json"`` for one JSON
        object per event, e.g. when a webhook app runs behind a collector.
    stream : typing.TextIO | None, optional
        Destination of the handler, defaults to ``sys.stderr``.
    """
    renderer = _renderer(log_format=log_format)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_vkrelay_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler._vkrelay_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            *renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def dispatch_fields(context: "Context") -> dict[str, t.Any]:
    """
    Fields identifying one update in log events.

    ``delivery_id`` and ``group_id`` are left out when the update has none,
    which is the case for user long-poll updates.
    """
    fields: dict[str, t.Any] = {
        "update_type": context.update_type,
        "context_type": context.type,
        "source": context.source.value,
    }
    if context.delivery_id is not None:
        fields["delivery_id"] = context.delivery_id
    if context.group_id is not None:
        fields["group_id"] = context.group_id
    return fields


@contextmanager
def logging_context(context: "Context") -> Iterator[None]:
    # A nested dispatch keeps the fields of the update that started it.
    current = structlog.contextvars.get_contextvars()
    if "update_type" in current:
        yield
        return

    with structlog.contextvars.bound_contextvars(**dispatch_fields(context=context)):
        yield
