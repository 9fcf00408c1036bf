"""Logging configuration for the DeFi interaction farm.

Sets up the logging pipeline:

1. **Console** -- :class:`SafeStreamHandler` that gracefully handles
   Unicode on Windows by falling back to ``cp1252`` replacement
   encoding.
2. **File** (opt-in) -- :class:`CompressedRotatingFileHandler` writing
   to ``logs/defi_farm.log`` with automatic gzip rotation (10 MiB per
   file, 5 backups).

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG", log_to_file=True)
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from core.config import LOGS_DIR

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
DEFAULT_LOG_FILE = str(LOGS_DIR / "defi_farm.log")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files.

    Rotated files are renamed with a ``.gz`` suffix and compressed
    in-place, keeping disk usage low for long-running farms.
    """

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, 'rb') as f_in:
            with gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that never crashes on unencodable characters.

    On Windows, console output defaults to a narrow code page.  This
    handler catches :exc:`UnicodeEncodeError` and falls back to
    ``cp1252`` with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                safe_msg = msg.encode(
                    'cp1252', errors='replace',
                ).decode('cp1252')
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_path: Optional[str] = None,
) -> None:
    """Configure the root logger.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
            Unknown names fall back to ``INFO``.
        log_to_file: Also write to a compressed rotating log file.
        log_path: Override for the log file location (defaults to
            ``logs/defi_farm.log``).
    """
    if sys.platform == "win32" and hasattr(sys.stdout, 'reconfigure'):
        sys.stdout.reconfigure(encoding='utf-8', errors='replace')
        sys.stderr.reconfigure(encoding='utf-8', errors='replace')

    level = getattr(logging, log_level.upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    handlers: List[logging.Handler] = [SafeStreamHandler(sys.stdout)]
    if log_to_file:
        path = log_path or DEFAULT_LOG_FILE
        log_dir = os.path.dirname(path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            CompressedRotatingFileHandler(
                path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            )
        )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
