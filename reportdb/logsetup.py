"""Logger configuration for development and production environments."""

from __future__ import annotations

import gzip
import json
import logging
import logging.handlers
import os
import shutil
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

from reportdb.config import Settings

LOGGER_NAME = "reportdb"
_BACKUP_COUNT = 3
_CONSOLE_FORMAT = "%(asctime)s\t%(levelname)s\t%(filename)s:%(lineno)d\t%(message)s"


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": record.levelname.lower(),
            "ts": datetime.fromtimestamp(record.created)
            .astimezone()
            .isoformat(timespec="milliseconds"),
            "caller": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _prune_backups(directory: Path, base_name: str, retention_days: int) -> None:
    cutoff = time.time() - retention_days * 86400
    for backup in directory.glob(base_name + ".*"):
        if backup.stat().st_mtime < cutoff:
            backup.unlink(missing_ok=True)


def _make_rotator(compress: bool, retention_days: int) -> Callable[[str, str], None]:
    def rotate(source: str, dest: str) -> None:
        if compress:
            with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.remove(source)
        else:
            os.replace(source, dest)
        if retention_days > 0:
            _prune_backups(Path(dest).parent, Path(source).name, retention_days)

    return rotate


def _file_handler(path: Path, settings: Settings, compress: bool) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=settings.max_log_file_size_mb * 1024 * 1024,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    if compress:
        handler.namer = lambda name: name + ".gz"
    handler.rotator = _make_rotator(compress, settings.log_file_retention_days)
    handler.setFormatter(_JsonFormatter())
    return handler


def init_logger(settings: Settings, log_dir: str | Path = "logs") -> logging.Logger:
    """Configure and return the package logger.

    Production logs errors only, as JSON, to a compressed rotating file;
    development logs everything to the console and to a JSON file.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    stamp = datetime.now().strftime("%Y_%m_%d")

    if settings.is_production:
        logger.setLevel(logging.ERROR)
        logger.addHandler(_file_handler(directory / f"prod_{stamp}.log", settings, True))
    else:
        logger.setLevel(logging.DEBUG)
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        logger.addHandler(console)
        logger.addHandler(_file_handler(directory / f"dev_{stamp}.log", settings, False))

    return logger