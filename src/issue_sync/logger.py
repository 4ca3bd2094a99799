import json
import logging
import os
import sys

DEFAULT_LOG_FILE = "/tmp/issue-sync.log"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty below WARNING even for ordinary runs.
_QUIET_LOGGERS = ("urllib3", "charset_normalizer")


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg (and exc)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    fmt = "[%(asctime)s] [%(levelname)s] "
    fmt += "%(name)s %(message)s" if with_name else "%(message)s"
    return logging.Formatter(fmt, datefmt=_DATEFMT)


def _level(mode: str, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL", "WARNING" if mode == "editor" else "INFO")
    return getattr(logging, name.upper(), logging.INFO)


def _file_handler(path: str, debug_format: str) -> logging.Handler:
    handler = logging.FileHandler(path, mode="a")
    handler.setFormatter(_formatter(debug_format, with_name=True))
    return handler


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
) -> None:
    """
    Install the root handlers for one issue-sync run.

    In ``cli`` mode records go to stderr, and also to ``log_file`` when one
    is given.  ``editor`` mode is for runs started from inside an editor,
    where anything written to stderr would end up in the buffer; records go
    to ``log_file``, then ``$LOG_FILE``, then ``DEFAULT_LOG_FILE``.

    Args:
        mode: "cli" or "editor".
        debug: Force DEBUG regardless of ``$LOG_LEVEL``.
        log_file: Extra (cli) or only (editor) log destination.
        debug_format: "text" or "json".

    ``$LOG_LEVEL`` defaults to INFO for cli runs and WARNING for editor runs.
    """
    log_level = _level(mode, debug)

    handlers: list[logging.Handler] = []
    if mode == "editor":
        path = log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE)
        handlers.append(_file_handler(path, debug_format))
    else:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_formatter(debug_format, with_name=False))
        handlers.append(console)
        if log_file:
            handlers.append(_file_handler(log_file, debug_format))

    logging.basicConfig(level=log_level, handlers=handlers)

    if log_level != logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
