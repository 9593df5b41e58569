"""Structlog-based logging configuration for the flasher.

Entry points call configure_structlog once; library modules keep using
logging.getLogger(__name__) and their records are rendered by structlog's
ProcessorFormatter.
"""

import logging
import os
import sys
from collections.abc import Callable
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import structlog

from flightflasher.config.models import FlasherSettings


def get_tool_version() -> str:
    """Installed package version, or "unknown" when running from a checkout."""
    try:
        return version("flight-tracker-flasher")
    except PackageNotFoundError:
        return "unknown"


def _add_static_context(extra_fields: dict[str, str]) -> Callable:
    """Processor to add static context fields to all log entries."""

    def processor(
        logger: structlog.BoundLogger, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.update(extra_fields)
        return event_dict

    return processor


def _shared_processors(settings: FlasherSettings) -> list:
    extra_fields = {
        "service": "flight-tracker-flasher",
        "version": get_tool_version(),
        **settings.logging.extra_fields,
    }
    processors = [
        structlog.contextvars.merge_contextvars,
        _add_static_context(extra_fields),
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
    ]
    if settings.logging.include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder())
    return processors


def _renderer(settings: FlasherSettings) -> Any:
    use_json = settings.logging.json_logs
    if os.environ.get("FLIGHTFLASHER_JSON_LOGS", "").lower() == "true":
        use_json = True
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _configure_handlers(settings: FlasherSettings, shared: list) -> None:
    """Route stdlib records through structlog's formatter on stderr."""
    root_logger = logging.getLogger()
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(log_level)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def configure_structlog(settings: FlasherSettings) -> None:
    """Configure structlog-based logging system.

    Args:
        settings: The FlasherSettings instance containing logging settings.
    """
    shared = _shared_processors(settings)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.logging.level.upper(), logging.INFO)
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_handlers(settings, shared)

    logger = structlog.get_logger(__name__)
    logger.debug(
        "Structured logging configured",
        tool_version=get_tool_version(),
        log_level=settings.logging.level,
        json_output=settings.logging.json_logs,
    )


class StageLogSink:
    """File sink for one bootstrap stage's log.

    Opened once when the stage starts and closed when it ends, whether the
    stage completed or aborted. Lines are appended so a re-run keeps the
    previous attempt's output.
    """

    def __init__(self, path: Path, logger_name: str = "flightflasher.stage"):
        self.path = path
        self.logger = logging.getLogger(logger_name)
        self._handler: logging.FileHandler | None = None

    @property
    def is_open(self) -> bool:
        """Whether the sink is currently attached."""
        return self._handler is not None

    def open(self) -> None:
        if self._handler is not None:
            raise RuntimeError(f"Log sink {self.path} is already open")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.INFO)
        self._handler = handler

    def write(self, message: str) -> None:
        if self._handler is None:
            raise RuntimeError(f"Log sink {self.path} is not open")
        self.logger.info(message)

    def close(self) -> None:
        if self._handler is None:
            return
        self.logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> "StageLogSink":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
