"""Progress output and log files.

Engines never print directly; they are handed a Reporter. The console gets
short status lines, the ``deckporter`` logger gets everything, and
configure_logging() points that logger at a log directory.
"""

import logging
import sys
from pathlib import Path

LOGGER_NAME = 'deckporter'

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(log_dir):
    """Write combined.log, warn.log and error.log under log_dir.

    Returns:
        Path: The log directory
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for filename, level in (('combined.log', logging.DEBUG),
                            ('warn.log', logging.WARNING),
                            ('error.log', logging.ERROR)):
        handler = logging.FileHandler(log_dir / filename, encoding='utf-8')
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG)
    return log_dir


def close_logging():
    """Detach and close the file handlers added by configure_logging()."""
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


class Reporter:
    """Progress capability passed into each engine.

    Args:
        verbose: Also echo verbose messages to the console
        stream: Console stream (default: stdout)
    """

    def __init__(self, verbose=False, stream=None):
        self.verbose_console = verbose
        self.stream = stream
        self.warnings = []

    def _print(self, text):
        print(text, file=self.stream or sys.stdout, flush=True)

    def report(self, message):
        """A step in progress."""
        logger.info(message)
        self._print(f"→ {message}")

    def succeed(self, message):
        """A step that completed."""
        logger.info(message)
        self._print(f"✓ {message}")

    def warn(self, message):
        """A recoverable problem; the run continues."""
        logger.warning(message)
        self.warnings.append(message)
        self._print(f"⚠ Warning: {message}")

    def fail(self, message):
        """A fatal problem; the caller is about to abort."""
        logger.error(message)
        self._print(f"❌ Error: {message}")

    def verbose(self, message):
        """Detail for the log files only (console too with --verbose)."""
        logger.debug(message)
        if self.verbose_console:
            self._print(f"  {message}")


class NullReporter(Reporter):
    """Reporter that only logs; used when callers pass no reporter."""

    def _print(self, text):
        pass
