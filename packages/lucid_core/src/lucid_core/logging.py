import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar, Token
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional, Union

# Request-local id, set by whoever owns the request lifecycle
request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(request_tag)s%(name)s: %(message)s"


class RequestFormatter(logging.Formatter):
    """
    Formatter that tags records with the current request id and writes UTC times.
    """

    converter = time.gmtime

    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        return "%s.%03dZ" % (time.strftime("%Y-%m-%dT%H:%M:%S", ct), record.msecs)

    def format(self, record: logging.LogRecord) -> str:
        rid = request_id.get()
        record.request_tag = f"[{rid}] " if rid else ""
        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger named after the calling module.

    >>> logger = get_logger(__name__)
    """
    return logging.getLogger(name)


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10_485_760,
    backup_count: int = 5,
    namespace: Optional[str] = None,
) -> logging.Logger:
    """
    Configure handlers for the whole process or a single namespace.

    Args:
        level: Logging level; defaults to ``LOG_LEVEL`` from settings.
        log_file: Optional path of a rotating log file.
        namespace: When given (e.g. ``"lucid_db"``), only that logger tree is
            configured and it stops propagating to the root logger.

    Returns:
        The configured logger.
    """
    if level is None:
        from lucid_core.config import lucid_settings

        level = lucid_settings.LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target = logging.getLogger(namespace) if namespace else logging.getLogger()

    # Reconfiguration must not stack handlers.
    target.handlers.clear()
    target.setLevel(level)

    formatter = RequestFormatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    target.addHandler(console)

    if log_file:
        file_path = Path(log_file).resolve()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            target.addHandler(file_handler)
        except OSError as e:
            sys.stderr.write(f"Failed to setup log file: {e}\n")

    if namespace:
        target.propagate = False

    return target


def set_request_id(value: str) -> Token:
    """
    Bind a request id to the current context and return the reset token.

    >>> token = set_request_id("req-42")
    >>> reset_request_id(token)
    """
    return request_id.set(value)


def reset_request_id(token: Token) -> None:
    request_id.reset(token)


@contextmanager
def scoped_request_id(value: str) -> Generator[None, None, None]:
    """
    Bind a request id for the duration of the block.

    >>> with scoped_request_id("req-7"):
    ...     pass
    """
    token = set_request_id(value)
    try:
        yield
    finally:
        reset_request_id(token)
