"""JSON logging for the gateway service, scripts and Lambda handler."""

import logging
import os

from pythonjsonlogger import jsonlogger

BASE_FIELDS = ("timestamp", "level", "message", "exc_info", "funcName", "lineno")

# Context keys callers may attach with ``extra=``. Never secrets or PEM text.
CONTEXT_FIELDS = ("server", "customer", "state", "exit_code", "duration_ms")


class GatewayJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting the base fields plus whitelisted request context.

    Anything else a library or ``extra=`` puts on the record is dropped, so a
    stray attribute cannot leak key material into the log stream.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value

        allowed = set(BASE_FIELDS) | set(CONTEXT_FIELDS)
        for key in [key for key in log_record if key not in allowed]:
            log_record.pop(key)


def _resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _setup_logger() -> logging.Logger:
    """Initialize the singleton ``ovpn_gateway`` logger.

    The level comes from ``LOG_LEVEL`` (default INFO); unknown names fall back
    to INFO.
    """
    logger = logging.getLogger("ovpn_gateway")

    # Lambda keeps the interpreter warm between invocations
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        GatewayJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )

    logger.setLevel(_resolve_level(os.environ.get("LOG_LEVEL")))
    logger.addHandler(handler)
    logger.propagate = False

    return logger


LOGGER = _setup_logger()
