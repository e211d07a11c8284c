"""Logging setup and entry point for the pteraform command line."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

from .config import Config

# Handlers installed by setup_logging carry this name so repeated setup
# replaces them instead of stacking duplicates
HANDLER_NAME = "pteraform"

# Standard LogRecord attributes; anything else on a record came from `extra`
_RESERVED_RECORD_KEYS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
})


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: Config, stream: TextIO | None = None) -> None:
    """Configure root logging from the provider configuration.

    Args:
        config: Provider configuration (level and format).
        stream: Destination stream. Defaults to stderr so that stdout stays
            free for command output.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(HANDLER_NAME)
    if config.json_logging:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(config.log_level_number)

    # asyncio logs subprocess transport details at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def run() -> None:
    """Entry point for the pteraform CLI."""
    from .cli import cli

    cli()


if __name__ == "__main__":
    run()
