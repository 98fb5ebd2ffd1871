"""Dated backup files for received telegrams.

Layout: ``{base}/{YYYY}/{MM}/{DD}.log``. Each record is a bracketed timestamp
line followed by the raw telegram and a newline. Files are only ever appended.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DIR_MODE = 0o755


class BackupError(Exception):
    """Base class for failures while appending a telegram to its backup file."""


class BackupDirectoryError(BackupError):
    pass


class BackupOpenError(BackupError):
    pass


class BackupWriteError(BackupError):
    pass


def backup_location(base_path: str | Path, received_at: datetime) -> Path:
    return (
        Path(base_path)
        / f"{received_at.year:04d}"
        / f"{received_at.month:02d}"
        / f"{received_at.day:02d}.log"
    )


def format_record(received_at: datetime, payload: bytes) -> bytes:
    header = f"[{received_at.strftime(TIMESTAMP_FORMAT)}]\n".encode("ascii")
    return header + payload + b"\n"


class BackupWriter:
    """Appends telegrams to the day file for their receive time.

    The file is opened and closed for every record; the lock keeps records
    from concurrent message callbacks from interleaving.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._lock = threading.Lock()

    def write(self, received_at: datetime, payload: bytes) -> Path:
        """Append one record and return the file it went to.

        Raises a ``BackupError`` subclass naming the step that failed.
        """
        path = backup_location(self.base_path, received_at)
        record = format_record(received_at, payload)

        try:
            path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise BackupDirectoryError(f"creating directory {path.parent}: {e}") from e

        with self._lock:
            try:
                f = path.open("ab")
            except OSError as e:
                raise BackupOpenError(f"opening file {path}: {e}") from e
            try:
                with f:
                    f.write(record)
            except OSError as e:
                raise BackupWriteError(f"writing to file {path}: {e}") from e

        logger.debug("Saved telegram to %s", path)
        return path
