"""
Logging setup for the monitor.

Vendor payloads put arbitrary strings (user names, titles, device names)
into log arguments. A newline in one of those would forge a new log line,
so a custom LogRecord factory escapes CR/LF in string arguments before
formatting.

Call setup_logging() once at startup.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_ORIGINAL_FACTORY = logging.getLogRecordFactory()


def _sanitize_value(value):
    """Escape newlines and carriage returns in a string log argument."""
    if isinstance(value, str):
        return value.replace('\r\n', '\\r\\n').replace('\r', '\\r').replace('\n', '\\n')
    return value


def _safe_record_factory(*args, **kwargs):
    record = _ORIGINAL_FACTORY(*args, **kwargs)
    if record.args:
        if isinstance(record.args, dict):
            record.args = {k: _sanitize_value(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_sanitize_value(a) for a in record.args)
    return record


def install_safe_logging():
    """Install the sanitizing LogRecord factory globally."""
    logging.setLogRecordFactory(_safe_record_factory)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger and install the sanitizing record factory.

    Unknown level names fall back to INFO.
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric_level)
    # httpx logs every request at INFO; one line per backend per cycle is too chatty
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
    install_safe_logging()
