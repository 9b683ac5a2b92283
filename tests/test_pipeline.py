import pytest
from pathlib import Path
from datetime import datetime

from media_organizer.core import MediaOrganizer
from media_organizer.database.db import DBManager
from media_organizer.database.ops import Journal
from media_organizer.models import FileStatus

from conftest import FakeExtractor, make_record, write_file


def _run(settings, journal, resume=False, **extractor_kwargs):
    organizer = MediaOrganizer(settings, journal, extractor=FakeExtractor(**extractor_kwargs), resume=resume)
    return organizer.run()


def _day_dir(settings, ext="jpg", *extra) -> Path:
    return settings.dest_dirs['image'].joinpath(ext, *extra, "2024", "2024-01", "2024-01-15")


def test_organizes_source_tree(disk_journal, make_settings, tmp_path):
    src = tmp_path / "src"
    write_file(src / "IMG_1.jpg", b"one")
    write_file(src / "trip" / "clip.mp4", b"video")
    write_file(src / "notes.txt", b"ignored")
    settings = make_settings()

    result = _run(settings, disk_journal, times={"clip.mp4": datetime(2023, 7, 4, 12, 0, 0)})

    assert (_day_dir(settings) / "20240115-103000 (IMG_1).jpg").read_bytes() == b"one"
    video = settings.dest_dirs['video'] / "mp4" / "2023" / "2023-07" / "2023-07-04" / "20230704-120000 (clip).mp4"
    assert video.read_bytes() == b"video"
    assert not (src / "IMG_1.jpg").exists()

    assert result.total_files == 2
    assert result.processed_files == 2
    assert result.organized_files == 2
    assert result.error_count == 0
    assert result.duplicate_count == 0
    assert result.interrupted is False


def test_identical_images_example(disk_journal, make_settings, tmp_path):
    write_file(tmp_path / "src" / "a.jpg", b"same content")
    write_file(tmp_path / "src" / "b.jpg", b"same content")
    settings = make_settings(no_original_name=True, concurrent_jobs=1)

    result = _run(settings, disk_journal)

    first = _day_dir(settings) / "20240115-103000_001.jpg"
    dup = _day_dir(settings, "jpg", "duplicates") / "20240115-103000_002.jpg"
    assert first.exists()
    assert dup.exists()
    assert result.duplicate_count == 1
    assert result.organized_files == 2
    assert not (_day_dir(settings) / "20240115-103000.jpg").exists()


def test_same_timestamp_group_fully_sequenced(disk_journal, make_settings, tmp_path):
    for i in range(5):
        write_file(tmp_path / "src" / f"burst{i}.jpg", b"x" * (i + 1))
    settings = make_settings(no_original_name=True)

    _run(settings, disk_journal)

    names = sorted(p.name for p in _day_dir(settings).iterdir())
    assert names == [f"20240115-103000_{n:03d}.jpg" for n in range(1, 6)]
    assert all(r.sequence_num > 0 for r in disk_journal.all_records())


def test_second_run_is_idempotent(disk_journal, make_settings, tmp_path):
    write_file(tmp_path / "src" / "a.jpg", b"a")
    write_file(tmp_path / "src" / "b.jpg", b"bb")
    settings = make_settings(copy_files=True)

    _run(settings, disk_journal)
    on_disk = sorted(_day_dir(settings).iterdir())

    result = _run(settings, disk_journal, resume=True)
    assert result.processed_files == 0
    assert result.skipped_files == 2
    assert result.organized_files == 2
    assert result.total_files == 2
    assert sorted(_day_dir(settings).iterdir()) == on_disk


def test_dry_run(disk_journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg")
    settings = make_settings(dry_run=True)

    result = _run(settings, disk_journal)

    assert src.exists()
    assert not settings.dest_dirs['image'].exists()
    assert result.organized_files == 1
    assert disk_journal.stats() == {FileStatus.DRY_RUN: 1}


def test_resume_requeues_planned_work(disk_journal, make_settings, tmp_path):
    settings = make_settings()
    out = tmp_path / "out" / "images"

    # Failed transfer: retried without re-planning
    failed_src = write_file(tmp_path / "src" / "failed.jpg", b"f")
    failed_id = disk_journal.insert(make_record(str(failed_src), size=1))
    disk_journal.update_destination(failed_id, str(out / "planned" / "failed.jpg"), 0, False)
    disk_journal.update_status(failed_id, FileStatus.FAILED, "disk full")

    # Moved before the status update was lost
    done_dest = write_file(out / "planned" / "done.jpg", b"d")
    done_id = disk_journal.insert(make_record(str(tmp_path / "src" / "done.jpg"), size=1))
    disk_journal.update_destination(done_id, str(done_dest), 0, False)

    # Gone from both sides
    lost_id = disk_journal.insert(make_record(str(tmp_path / "src" / "lost.jpg"), size=1))
    disk_journal.update_destination(lost_id, str(out / "planned" / "lost.jpg"), 0, False)

    # Completed earlier, still present because it was copied
    copied_src = write_file(tmp_path / "src" / "copied.jpg", b"c")
    copied_id = disk_journal.insert(make_record(str(copied_src), size=1))
    disk_journal.update_status(copied_id, FileStatus.COMPLETED)

    result = _run(settings, disk_journal, resume=True)

    assert (out / "planned" / "failed.jpg").read_bytes() == b"f"
    assert disk_journal.get(failed_id).status is FileStatus.COMPLETED
    assert disk_journal.get(done_id).status is FileStatus.COMPLETED
    lost = disk_journal.get(lost_id)
    assert lost.status is FileStatus.FAILED
    assert lost.error_message == "source file missing"
    assert copied_src.exists()

    assert result.processed_files == 0
    assert result.total_files == 4
    assert result.organized_files == 3
    assert result.error_count == 1


def test_leftover_destination_fails_on_resume(disk_journal, make_settings, tmp_path):
    settings = make_settings()
    src = write_file(tmp_path / "src" / "a.jpg", b"complete")
    partial = write_file(tmp_path / "out" / "images" / "a.jpg", b"comp")
    file_id = disk_journal.insert(make_record(str(src), size=8))
    disk_journal.update_destination(file_id, str(partial), 0, False)

    _run(settings, disk_journal, resume=True)

    rec = disk_journal.get(file_id)
    assert rec.status is FileStatus.FAILED
    assert "destination already exists" in rec.error_message
    assert src.exists()


def test_cross_run_dedup_through_destination_index(make_settings, tmp_path):
    library = tmp_path / "out" / "images"
    write_file(tmp_path / "src" / "a.jpg", b"shared content")
    settings = make_settings(copy_files=True, no_original_name=True)

    with DBManager(tmp_path / "first.db") as conn:
        _run(settings, Journal(conn))

    # A different source tree organized into the same library with a new journal
    write_file(tmp_path / "src2" / "copy.jpg", b"shared content")
    settings2 = make_settings(source_dir=tmp_path / "src2", copy_files=True, no_original_name=True,
                              db_path=tmp_path / "second.db")
    with DBManager(tmp_path / "second.db") as conn:
        journal = Journal(conn)
        result = _run(settings2, journal)

        assert result.duplicate_count == 1
        assert (library / "jpg" / "duplicates" / "2024" / "2024-01" / "2024-01-15" / "20240115-103000.jpg").exists()
        # The hashed index row survives for the next run, unhashed ones are gone
        index = journal.destination_index_entries()
        assert len(index) == 1 and index[0].hash


def test_destination_inside_source_is_not_rescanned(disk_journal, make_settings, tmp_path):
    src = tmp_path / "src"
    write_file(src / "a.jpg", b"a")
    settings = make_settings(dest_dirs={'image': src / "organized"})

    _run(settings, disk_journal)
    result = _run(settings, disk_journal, resume=True)

    assert result.processed_files == 0
    assert result.total_files == 1
    assert len(list((src / "organized").rglob("*.jpg"))) == 1


def test_delete_empty_dirs_after_move(disk_journal, make_settings, tmp_path):
    src = tmp_path / "src"
    write_file(src / "deep" / "er" / "a.jpg")
    write_file(src / "keep" / "notes.txt")
    settings = make_settings(delete_empty_dirs=True)

    _run(settings, disk_journal)

    assert not (src / "deep").exists()
    assert (src / "keep").exists()
    assert src.exists()


def test_delete_empty_dirs_leaves_hidden_and_destination_dirs(disk_journal, make_settings, tmp_path):
    src = tmp_path / "src"
    write_file(src / "deep" / "a.jpg")
    (src / ".cache" / "thumbs").mkdir(parents=True)
    (src / "organized" / "albums").mkdir(parents=True)
    settings = make_settings(dest_dirs={'image': src / "organized"}, delete_empty_dirs=True)

    _run(settings, disk_journal)

    assert not (src / "deep").exists()
    assert (src / ".cache" / "thumbs").is_dir()
    assert (src / "organized" / "albums").is_dir()
    assert len(list((src / "organized").rglob("*.jpg"))) == 1


def test_empty_dirs_kept_in_copy_mode(disk_journal, make_settings, tmp_path):
    src = tmp_path / "src"
    write_file(src / "deep" / "a.jpg")
    (src / "empty").mkdir()
    settings = make_settings(delete_empty_dirs=True, copy_files=True)

    _run(settings, disk_journal)
    assert (src / "empty").exists()


def test_extraction_errors_are_counted(disk_journal, make_settings, tmp_path):
    write_file(tmp_path / "src" / "good.jpg")
    write_file(tmp_path / "src" / "bad.jpg")
    settings = make_settings()

    result = _run(settings, disk_journal, fail_names={"bad.jpg"})

    assert result.error_count == 1
    assert result.organized_files == 1
    assert (tmp_path / "src" / "bad.jpg").exists()


def test_stop_before_run_organizes_nothing(disk_journal, make_settings, tmp_path):
    src = write_file(tmp_path / "src" / "a.jpg")
    organizer = MediaOrganizer(make_settings(), disk_journal, extractor=FakeExtractor())
    organizer.stop()

    result = organizer.run()

    assert result.interrupted is True
    assert result.organized_files == 0
    assert src.exists()


@pytest.mark.parametrize("jobs", [1, 3])
def test_many_files_no_destination_conflicts(disk_journal, make_settings, tmp_path, jobs):
    for i in range(40):
        # Every 4th file shares content with the previous one
        content = f"content-{i - (i % 4 == 3)}".encode()
        write_file(tmp_path / "src" / f"d{i % 3}" / f"f{i}.jpg", content)
    settings = make_settings(no_original_name=True, concurrent_jobs=jobs)

    result = _run(settings, disk_journal)

    records = disk_journal.all_records()
    assert len(records) == 40
    assert len({r.dest_path for r in records}) == 40
    assert all(r.status is FileStatus.COMPLETED for r in records)
    assert result.duplicate_count == 10
    assert len(list(settings.dest_dirs['image'].rglob("*.jpg"))) == 40
