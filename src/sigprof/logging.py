"""Console output for the CLI and structlog setup for capture events.

Dispatcher, sinks and profiler log through module-level structlog loggers.
configure() decides where those events end up; the console helpers here are
only for messages a person running the CLI should read. Everything goes to
stderr so profiles written to stdout stay clean.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from sigprof.config import Config

_console = Console(highlight=False, stderr=True)


class Icon:
    """Markup prefixes for console lines."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    SIGNAL = "⚡"


_TAGS = {
    "info": "[bright_blue]sigprof[/]",
    "error": "[bold red]sigprof[/]",
}


def _print(level: str, msg: str, icon: str) -> None:
    stamp = datetime.now().strftime("%H:%M:%S")
    tag = _TAGS.get(level, "sigprof")
    prefix = f"{icon} " if icon else ""
    _console.print(f"[dim]{stamp}[/] {tag} {prefix}{msg}")


def info(msg: str, icon: str = "") -> None:
    _print("info", msg, icon)


def error(msg: str, icon: str = "") -> None:
    _print("error", msg, icon)


def signal_sent(name: str, pid: int) -> None:
    """Report a trigger delivered by `sigprof trigger`."""
    info(f"Sent [bold]{name}[/] to PID [cyan]{pid}[/]", Icon.SIGNAL)


def installed(usr1: list[str], usr2: list[str], mode: str) -> None:
    """Report which profiles each trigger captures."""
    info(
        f"sigprof installed: USR1 → [cyan]{','.join(usr1)}[/], "
        f"USR2 → [cyan]{','.join(usr2)}[/] [dim]({mode})[/]",
        Icon.OK,
    )


def _tag_source(source: str) -> structlog.types.Processor:
    """Processor adding a source field, so JSON lines can be told apart."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict.setdefault("source", source)
        return event_dict

    return processor


def _stderr_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=[
                structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
                structlog.processors.add_log_level,
            ],
        )
    )
    return handler


def _json_handler(config: Config) -> logging.Handler:
    config.state_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.max_bytes,
        backupCount=config.logging.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _tag_source("sigprof"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    return handler


def configure(config: Config, json_file: bool = True) -> None:
    """Send structlog events through stdlib logging.

    Events always go to stderr. With json_file they are also appended as JSON
    Lines to config.log_path, rotated per config.logging. Replaces any handlers
    already on the root logger.
    """
    handlers = [_stderr_handler()]
    if json_file:
        handlers.append(_json_handler(config))

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
