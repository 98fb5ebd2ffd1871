"""Unit tests for src/backup.py."""

import threading
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.backup import (
    BackupDirectoryError,
    BackupError,
    BackupOpenError,
    BackupWriteError,
    BackupWriter,
    backup_location,
)

TELEGRAM = b"/ISK5\\2M550T-1012\n1-0:1.8.1(001234.567*kWh)\n!A1B2\n"


def test_backup_location():
    assert backup_location("/data", datetime(2024, 3, 7, 10, 15, 30)) == Path("/data/2024/03/07.log")


def test_backup_location_pads_components():
    assert backup_location("/data", datetime(999, 1, 2)) == Path("/data/0999/01/02.log")


class TestBackupWriter:
    def test_write_creates_dated_file(self, tmp_path):
        writer = BackupWriter(tmp_path)
        path = writer.write(datetime(2024, 3, 7, 10, 15, 30), TELEGRAM)
        assert path == tmp_path / "2024" / "03" / "07.log"
        assert path.read_bytes() == b"[2024-03-07 10:15:30]\n" + TELEGRAM + b"\n"

    def test_same_day_appends(self, tmp_path):
        writer = BackupWriter(tmp_path)
        writer.write(datetime(2024, 3, 7, 10, 15, 30), b"first")
        writer.write(datetime(2024, 3, 7, 23, 59, 59), b"second")
        content = (tmp_path / "2024" / "03" / "07.log").read_bytes()
        assert content == b"[2024-03-07 10:15:30]\nfirst\n[2024-03-07 23:59:59]\nsecond\n"

    def test_next_day_new_file(self, tmp_path):
        writer = BackupWriter(tmp_path)
        first = writer.write(datetime(2024, 3, 31, 23, 59, 59), b"a")
        second = writer.write(datetime(2024, 4, 1, 0, 0, 0), b"b")
        assert first != second
        assert second == tmp_path / "2024" / "04" / "01.log"
        assert first.read_bytes() == b"[2024-03-31 23:59:59]\na\n"

    def test_existing_directory_ok(self, tmp_path):
        (tmp_path / "2024" / "03").mkdir(parents=True)
        writer = BackupWriter(tmp_path)
        path = writer.write(datetime(2024, 3, 7, 10, 15, 30), b"x")
        assert path.exists()

    def test_existing_file_not_truncated(self, tmp_path):
        target = tmp_path / "2024" / "03" / "07.log"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"previous\n")
        BackupWriter(tmp_path).write(datetime(2024, 3, 7, 10, 15, 30), b"x")
        assert target.read_bytes() == b"previous\n[2024-03-07 10:15:30]\nx\n"

    def test_directory_error(self, tmp_path):
        blocker = tmp_path / "2024"
        blocker.write_text("not a directory")
        with pytest.raises(BackupDirectoryError):
            BackupWriter(tmp_path).write(datetime(2024, 3, 7), b"x")

    def test_open_error(self, tmp_path):
        # A directory where the day file should be
        (tmp_path / "2024" / "03" / "07.log").mkdir(parents=True)
        with pytest.raises(BackupOpenError):
            BackupWriter(tmp_path).write(datetime(2024, 3, 7), b"x")

    def test_write_error(self, tmp_path):
        f = MagicMock()
        f.__exit__.return_value = False
        f.write.side_effect = OSError(28, "No space left on device")
        with patch.object(Path, "open", return_value=f):
            with pytest.raises(BackupWriteError):
                BackupWriter(tmp_path).write(datetime(2024, 3, 7), b"x")
        f.__exit__.assert_called_once()

    def test_errors_share_base_class(self):
        for cls in (BackupDirectoryError, BackupOpenError, BackupWriteError):
            assert issubclass(cls, BackupError)

    def test_concurrent_writes_do_not_interleave(self, tmp_path):
        writer = BackupWriter(tmp_path)
        received_at = datetime(2024, 3, 7, 10, 15, 30)
        payloads = [(b"/T%02d\n" % i) + b"x" * 20000 + b"\n!END\n" for i in range(20)]
        start = threading.Barrier(len(payloads))

        def worker(payload):
            start.wait()
            writer.write(received_at, payload)

        threads = [threading.Thread(target=worker, args=(p,)) for p in payloads]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        content = (tmp_path / "2024" / "03" / "07.log").read_bytes()
        header = b"[2024-03-07 10:15:30]\n"
        records = [header + p + b"\n" for p in payloads]
        assert len(content) == sum(len(r) for r in records)
        for record in records:
            assert record in content
