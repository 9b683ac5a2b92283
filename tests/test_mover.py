import os
import errno
import pytest
from pathlib import Path

from media_organizer.models import FileStatus, TransferJob
from media_organizer.organization import mover as mover_module
from media_organizer.organization.mover import FileMover

from conftest import make_record, write_file


def _job(journal, src: Path, dest: Path) -> TransferJob:
    file_id = journal.insert(make_record(str(src), size=src.stat().st_size))
    journal.update_destination(file_id, str(dest), 0, False)
    return TransferJob(record_id=file_id, source_path=src, dest_path=dest)


def test_move(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg", b"payload")
    dest = tmp_path / "out" / "2024" / "a.jpg"
    job = _job(journal, src, dest)

    assert FileMover(journal, make_settings()).transfer(job) is FileStatus.COMPLETED
    assert not src.exists()
    assert dest.read_bytes() == b"payload"
    assert journal.get(job.record_id).status is FileStatus.COMPLETED


def test_copy_preserves_mtime(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg", b"payload")
    os.utime(src, (1_500_000_000, 1_500_000_000))
    dest = tmp_path / "out" / "a.jpg"
    job = _job(journal, src, dest)

    assert FileMover(journal, make_settings(copy_files=True)).transfer(job) is FileStatus.COMPLETED
    assert src.exists()
    assert dest.read_bytes() == b"payload"
    assert int(dest.stat().st_mtime) == 1_500_000_000


def test_existing_destination_is_not_overwritten(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg", b"new")
    dest = write_file(tmp_path / "out" / "a.jpg", b"old")
    job = _job(journal, src, dest)

    assert FileMover(journal, make_settings()).transfer(job) is FileStatus.FAILED
    assert dest.read_bytes() == b"old"
    assert src.exists()
    rec = journal.get(job.record_id)
    assert rec.status is FileStatus.FAILED
    assert "destination already exists" in rec.error_message


def test_missing_source_fails(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg")
    job = _job(journal, src, tmp_path / "out" / "a.jpg")
    src.unlink()

    assert FileMover(journal, make_settings(copy_files=True)).transfer(job) is FileStatus.FAILED
    assert journal.get(job.record_id).error_message
    assert not (tmp_path / "out" / "a.jpg").exists()


def test_dry_run_touches_nothing(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg")
    dest = tmp_path / "out" / "a.jpg"
    job = _job(journal, src, dest)

    assert FileMover(journal, make_settings(dry_run=True)).transfer(job) is FileStatus.DRY_RUN
    assert src.exists()
    assert not dest.parent.exists()
    assert journal.get(job.record_id).status is FileStatus.DRY_RUN


def test_cross_device_move_falls_back_to_copy(journal, make_settings, tmp_path, monkeypatch):
    def fake_rename(a, b):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(mover_module.os, "rename", fake_rename)
    src = write_file(tmp_path / "src" / "a.jpg", b"payload")
    dest = tmp_path / "out" / "a.jpg"
    job = _job(journal, src, dest)

    assert FileMover(journal, make_settings()).transfer(job) is FileStatus.COMPLETED
    assert not src.exists()
    assert dest.read_bytes() == b"payload"


def test_other_rename_errors_fail(journal, make_settings, tmp_path, monkeypatch):
    def fake_rename(a, b):
        raise OSError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(mover_module.os, "rename", fake_rename)
    src = write_file(tmp_path / "src" / "a.jpg")
    job = _job(journal, src, tmp_path / "out" / "a.jpg")

    assert FileMover(journal, make_settings()).transfer(job) is FileStatus.FAILED
    assert src.exists()


def test_destination_reread_from_journal(journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg")
    stale = tmp_path / "out" / "a.jpg"
    job = _job(journal, src, stale)
    final = tmp_path / "out" / "a_001.jpg"
    journal.update_destination(job.record_id, str(final), 1, False)

    FileMover(journal, make_settings()).transfer(job)
    assert final.exists()
    assert not stale.exists()
