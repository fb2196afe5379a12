"""
Logging configuration — one setup shared by the installer and the panel.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
whatever is configured here. Level precedence:

    --debug / --verbose / --quiet  >  CSP_LOG_LEVEL  >  command default

The console handler writes to stderr so ``--json`` output on stdout
stays parseable. An optional file handler (``CSP_LOG_FILE``, or the
install log under the state directory) adds dates and source locations.

The password must never reach a log line. ``mask_secret()`` registers a
value that every handler replaces with ``***`` before formatting,
including error text echoed back by a failed collaborator command.
"""

from __future__ import annotations

import logging
import sys

MASK = "***"

# level -> (format, datefmt); the first entry whose level is >= the
# configured one wins
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


class SecretFilter(logging.Filter):
    """Replaces registered secret values in the rendered message."""

    def __init__(self) -> None:
        super().__init__()
        self.secrets: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg, record.args = masked, None
        return True


_secret_filter = SecretFilter()


def mask_secret(value: str) -> None:
    """Never let ``value`` appear in a log line from here on."""
    if value:
        _secret_filter.secrets.add(value)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """(Re)configure the root logger.

    Safe to call more than once: the CLI group configures logging from
    the global flags, then ``install`` reconfigures it with its log file.

    Args:
        level: Console level name. Unknown names fall back to WARNING.
        log_file: Optional log file path. An unopenable file is reported
            on the console and skipped.
        log_file_level: File level name (default: same as ``level``).
    """
    console_level = _parse_level(level)
    fmt, datefmt = next((f, d) for lvl, f, d in _CONSOLE_FORMATS if console_level <= lvl)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    handlers: list[logging.Handler] = [console]
    root_level = console_level
    problem = None

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            problem = f"Cannot open log file {log_file}: {e}"
        else:
            fh.setLevel(file_level)
            fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
            handlers.append(fh)
            root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.addFilter(_secret_filter)
        root.addHandler(handler)
    root.setLevel(root_level)

    # A closed stream or a full disk must not abort a run.
    logging.raiseExceptions = False

    if problem:
        root.warning(problem)


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; WARNING when unknown."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
