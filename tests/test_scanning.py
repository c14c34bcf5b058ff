import os
import threading

import pytest

from conftest import set_mtime
from edit_tracker import config
from edit_tracker.exceptions import InvalidDirectory, NotAccessible, ScanCancelled
from edit_tracker.models import DetectionMethod, FileKind, JPEGClassification, StatusKind
from edit_tracker.scanning.scanner import DirectoryScanner


def test_ext_to_type_lookup():
    assert config.EXT_TO_TYPE.get('.cr2') == 'raw'
    assert config.EXT_TO_TYPE.get('.jpg') == 'jpeg'
    assert config.EXT_TO_TYPE.get('.tif') == 'edited'
    assert config.EXT_TO_TYPE.get('.xyz', 'other') == 'other'


def test_two_raws_one_edited(tmp_path, make_file):
    make_file(tmp_path / "IMG_01.NEF", offset=0)
    make_file(tmp_path / "IMG_02.NEF", offset=0)
    make_file(tmp_path / "IMG_02.jpg", offset=30)

    collection = DirectoryScanner().scan_shallow(tmp_path)

    assert [p.name for p in collection.photos] == ["IMG_01.NEF", "IMG_02.NEF"]
    by_name = {p.name: p for p in collection.photos}
    assert by_name["IMG_01.NEF"].status.kind is StatusKind.UNEDITED
    assert by_name["IMG_02.NEF"].status.method is DetectionMethod.FORMAT_CONVERSION
    assert by_name["IMG_02.NEF"].edited_variants == [tmp_path / "IMG_02.jpg"]
    assert collection.progress.total_photos == 2
    assert collection.progress.edited_photos == 1
    assert collection.progress.percentage == 50.0


def test_raw_only_folder_is_unedited(tmp_path, make_file):
    for i in range(3):
        make_file(tmp_path / f"DSC_{i}.ARW")

    collection = DirectoryScanner().scan_shallow(tmp_path)

    assert all(p.status.kind is StatusKind.UNEDITED for p in collection.photos)
    assert collection.progress.edited_photos == 0


def test_shallow_skips_hidden_unknown_and_subdirectories(tmp_path, make_file):
    make_file(tmp_path / "A.CR2")
    make_file(tmp_path / ".hidden.CR2")
    make_file(tmp_path / ".DS_Store")
    make_file(tmp_path / "notes.txt")
    make_file(tmp_path / "clip.mov")
    make_file(tmp_path / "sub" / "B.CR2")

    collection = DirectoryScanner().scan_shallow(tmp_path)

    assert [p.name for p in collection.photos] == ["A.CR2"]
    assert collection.children == []


def test_jpeg_only_folder_needs_classification(tmp_path, make_file):
    make_file(tmp_path / "a.jpg")
    make_file(tmp_path / "b.JPEG")
    make_file(tmp_path / "c.png")

    collection = DirectoryScanner().scan_shallow(tmp_path)

    assert [p.name for p in collection.photos] == ["a.jpg", "b.JPEG"]
    for photo in collection.photos:
        assert photo.kind is FileKind.JPEG
        assert photo.status.kind is StatusKind.STANDALONE_JPEG
        assert photo.status.classification is JPEGClassification.NEEDS_EDITING
    assert collection.has_only_standalone_jpegs
    assert collection.needs_jpeg_classification
    assert collection.progress.edited_photos == 0


def test_jpegs_beside_raws_are_not_standalone(tmp_path, make_file):
    make_file(tmp_path / "A.NEF", offset=0)
    make_file(tmp_path / "A.jpg", offset=1)
    make_file(tmp_path / "unrelated.jpg", offset=1)

    collection = DirectoryScanner().scan_shallow(tmp_path)

    assert [p.name for p in collection.photos] == ["A.NEF"]
    assert collection.photos[0].status.kind is StatusKind.IN_CAMERA_JPEG


def test_stored_classification_applied(tmp_path, make_file, cache):
    folder = tmp_path / "exports"
    make_file(folder / "a.jpg")
    cache.save_jpeg_classification(folder, JPEGClassification.EDITED_EXPORT)

    collection = DirectoryScanner(cache=cache).scan_shallow(folder)

    assert collection.jpeg_classification is JPEGClassification.EDITED_EXPORT
    assert collection.photos[0].status.classification is JPEGClassification.EDITED_EXPORT
    assert not collection.needs_jpeg_classification
    assert collection.progress.edited_photos == 1


def test_shallow_invalid_directory(tmp_path, make_file):
    with pytest.raises(InvalidDirectory):
        DirectoryScanner().scan_shallow(tmp_path / "missing")

    f = make_file(tmp_path / "file.NEF")
    with pytest.raises(InvalidDirectory):
        DirectoryScanner().scan_shallow(f)


def test_shallow_not_accessible(tmp_path, monkeypatch):
    def deny(path):
        raise PermissionError(13, "Permission denied", str(path))
    monkeypatch.setattr(os, "scandir", deny)

    with pytest.raises(NotAccessible):
        DirectoryScanner().scan_shallow(tmp_path)


# --- Tree walks ---

def _build_tree(root, make_file):
    make_file(root / "r.NEF")
    make_file(root / "a" / "a.NEF")
    make_file(root / "a" / "b" / "b.NEF")
    make_file(root / "a" / "b" / "b.xmp")
    make_file(root / "c" / "c.NEF")


def test_tree_nests_and_aggregates(tmp_path, make_file):
    _build_tree(tmp_path, make_file)

    collection = DirectoryScanner().scan_tree(tmp_path, is_root_folder=True)

    assert collection.is_root_folder
    assert collection.subdirectory_paths == [tmp_path / "a", tmp_path / "c"]
    a = collection.children[0]
    assert a.parent_path == tmp_path
    assert not a.is_root_folder
    assert a.children[0].path == tmp_path / "a" / "b"
    assert collection.progress.total_photos == 4
    assert collection.progress.edited_photos == 1
    assert a.progress.edited_photos == 1


def test_tree_progress_is_determinate_for_root(tmp_path, make_file):
    _build_tree(tmp_path, make_file)
    calls = []

    DirectoryScanner().scan_tree(tmp_path, is_root_folder=True, progress_callback=calls.append)

    assert [(c.current_folder, c.folders_scanned, c.total_folders) for c in calls] == [
        (tmp_path.name, 1, 4),
        ("a", 2, 4),
        ("b", 3, 4),
        ("c", 4, 4),
    ]
    assert calls[-1].percent_complete == 100.0


def test_tree_progress_is_indeterminate_otherwise(tmp_path, make_file):
    _build_tree(tmp_path, make_file)
    calls = []

    DirectoryScanner().scan_tree(tmp_path, progress_callback=calls.append)

    assert len(calls) == 4
    assert all(c.is_indeterminate for c in calls)


def test_tree_skips_packages_but_not_dotted_folders(tmp_path, make_file):
    make_file(tmp_path / "Photos Library.photoslibrary" / "originals" / "x.NEF")
    make_file(tmp_path / "Catalog.lrdata" / "y.NEF")
    make_file(tmp_path / ".cache" / "z.NEF")
    make_file(tmp_path / "2023.01.05" / "w.NEF")

    scanner = DirectoryScanner()
    collection = scanner.scan_tree(tmp_path, is_root_folder=True)

    assert collection.subdirectory_paths == [tmp_path / "2023.01.05"]
    assert collection.progress.total_photos == 1
    assert scanner.count_folders(tmp_path) == 2


def test_tree_skips_failing_subtree(tmp_path, make_file, monkeypatch):
    _build_tree(tmp_path, make_file)
    bad = tmp_path / "a"
    original = DirectoryScanner._list_directory

    def flaky(self, directory):
        if directory == bad:
            raise NotAccessible(directory)
        return original(self, directory)
    monkeypatch.setattr(DirectoryScanner, "_list_directory", flaky)

    collection = DirectoryScanner().scan_tree(tmp_path, is_root_folder=True)

    assert collection.subdirectory_paths == [tmp_path / "c"]
    assert collection.skipped == [bad]
    assert collection.progress.total_photos == 2


def test_tree_root_errors_propagate(tmp_path):
    with pytest.raises(InvalidDirectory):
        DirectoryScanner().scan_tree(tmp_path / "missing", is_root_folder=True)


def test_tree_cancel_before_start(tmp_path, make_file):
    _build_tree(tmp_path, make_file)
    cancel = threading.Event()
    cancel.set()
    calls = []

    with pytest.raises(ScanCancelled):
        DirectoryScanner().scan_tree(tmp_path, progress_callback=calls.append, cancel_event=cancel)
    assert calls == []


def test_tree_cancel_before_next_subdirectory(tmp_path, make_file):
    _build_tree(tmp_path, make_file)
    cancel = threading.Event()
    calls = []

    def on_progress(progress):
        calls.append(progress)
        if progress.folders_scanned == 2:
            cancel.set()

    with pytest.raises(ScanCancelled):
        DirectoryScanner().scan_tree(tmp_path, is_root_folder=True, progress_callback=on_progress, cancel_event=cancel)
    assert [c.current_folder for c in calls] == [tmp_path.name, "a"]


def test_parallel_detection_matches_serial(tmp_path, make_file):
    for i in range(10):
        make_file(tmp_path / f"IMG_{i:02d}.NEF", offset=0)
        if i % 2:
            make_file(tmp_path / f"IMG_{i:02d}-2.jpg", offset=100)

    serial = DirectoryScanner(max_workers=1).scan_shallow(tmp_path)
    parallel = DirectoryScanner(max_workers=4).scan_shallow(tmp_path)

    assert serial.photos == parallel.photos
    assert parallel.progress.edited_photos == 5


def test_rescan_reuses_cache_while_folder_unchanged(tmp_path, make_file, cache, monkeypatch):
    folder = tmp_path / "lib"
    make_file(folder / "A.NEF", offset=0)
    make_file(folder / "A.xmp", offset=0)
    make_file(folder / "B.NEF", offset=0)
    set_mtime(folder, 0)

    scanner = DirectoryScanner(cache=cache, max_workers=1)
    first = scanner.scan_tree(folder, is_root_folder=True)
    cache.put_collection(first)

    def fail(*args, **kwargs):
        raise AssertionError("detection should not run")
    monkeypatch.setattr(scanner.engine, "classify", fail)

    second = scanner.scan_tree(folder, is_root_folder=True)
    assert second.photos == first.photos


def test_rescan_reclassifies_after_change(tmp_path, make_file, cache):
    folder = tmp_path / "lib"
    make_file(folder / "A.NEF", offset=0)
    set_mtime(folder, 0)

    scanner = DirectoryScanner(cache=cache, max_workers=1)
    first = scanner.scan_tree(folder, is_root_folder=True)
    cache.put_collection(first)
    assert first.progress.edited_photos == 0

    # A new export leaves A.NEF untouched but must still flip its status.
    (folder / "A-2.jpg").write_bytes(b"export")

    second = scanner.scan_tree(folder, is_root_folder=True)
    assert second.photos[0].status.method is DetectionMethod.VERSIONING
    assert second.progress.edited_photos == 1
