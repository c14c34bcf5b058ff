import sqlite3
import threading
import time

from conftest import BASE_TIME, set_mtime
from edit_tracker.cache import EditCache
from edit_tracker.database.ops import DBOperations
from edit_tracker.models import (
    Collection,
    DetectionMethod,
    EditStatus,
    FileKind,
    JPEGClassification,
    Photo,
)


def _edited_photo(raw, variant):
    return Photo(
        path=raw,
        kind=FileKind.RAW,
        status=EditStatus.edited(DetectionMethod.VERSIONING),
        edited_variants=[variant],
    )


def test_round_trip_returns_equal_photo(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    photo = _edited_photo(raw, tmp_path / "X-2.jpg")

    cache.put(photo, BASE_TIME)

    assert cache.get(raw) == photo


def test_round_trip_in_camera_and_standalone(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    jpeg = make_file(tmp_path / "solo" / "Y.jpg")
    in_camera = Photo(raw, FileKind.RAW, EditStatus.in_camera_jpeg(), in_camera_jpegs=[tmp_path / "X.jpg"])
    standalone = Photo(jpeg, FileKind.JPEG, EditStatus.standalone_jpeg(JPEGClassification.FINAL_AS_SHOT))

    cache.put(in_camera)
    cache.put(standalone)

    assert cache.get(raw) == in_camera
    assert cache.get(jpeg) == standalone


def test_get_misses_when_file_changed(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    cache.put(_edited_photo(raw, tmp_path / "X-2.jpg"), BASE_TIME)

    set_mtime(raw, 0.5)
    assert cache.get(raw) is not None

    set_mtime(raw, 2.0)
    assert cache.get(raw) is None


def test_get_misses_for_unknown_or_missing_files(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    assert cache.get(raw) is None

    cache.put(Photo(raw, FileKind.RAW), BASE_TIME)
    raw.unlink()
    assert cache.get(raw) is None


def test_put_overwrites_by_path(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    cache.put(Photo(raw, FileKind.RAW), BASE_TIME)
    updated = _edited_photo(raw, tmp_path / "X-2.jpg")
    cache.put(updated, BASE_TIME)

    assert cache.get(raw) == updated
    assert cache.statistics().photo_count == 1


def test_needs_rescan(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    assert cache.needs_rescan(raw)

    cache.put(Photo(raw, FileKind.RAW))
    assert not cache.needs_rescan(raw)

    set_mtime(raw, 1.5)
    assert cache.needs_rescan(raw)


def test_scan_summary_round_trip(tmp_path, cache):
    root = tmp_path / "lib"
    child = root / "2023"
    cache.put_scan_summary(root, "lib", 10, 4, has_children=True, is_root_folder=True, scan_date=1000.0)
    cache.put_scan_summary(child, "2023", 6, 1, parent_path=root, scan_date=1000.0)

    summary = cache.get_scan_summary(root)
    assert summary.photo_count == 10
    assert summary.edited_count == 4
    assert summary.has_children
    assert summary.is_root_folder
    assert summary.parent_path is None
    assert summary.scan_date == 1000.0

    children = cache.get_child_summaries(root)
    assert [c.folder_path for c in children] == [child]
    assert children[0].parent_path == root

    assert cache.get_scan_summary(tmp_path / "other") is None


def test_is_scan_valid(tmp_path, make_file, cache):
    folder = tmp_path / "lib"
    make_file(folder / "A.NEF")
    make_file(folder / "notes.txt")
    assert not cache.is_scan_valid(folder)

    cache.put_scan_summary(folder, "lib", 1, 0, scan_date=BASE_TIME + 10)
    assert cache.is_scan_valid(folder)

    # Any newer entry invalidates, tracked or not.
    set_mtime(folder / "notes.txt", 20)
    assert not cache.is_scan_valid(folder)


def test_is_scan_valid_detects_removed_entries(tmp_path, make_file, cache):
    folder = tmp_path / "lib"
    make_file(folder / "A.NEF")
    victim = make_file(folder / "A.jpg")
    cache.put_scan_summary(folder, "lib", 1, 1, scan_date=time.time())
    assert cache.is_scan_valid(folder)

    victim.unlink()
    set_mtime(folder, 3600 * 2)
    assert not cache.is_scan_valid(folder)


def test_jpeg_classification_round_trip(tmp_path, cache):
    folder = tmp_path / "exports"
    assert cache.get_jpeg_classification(folder) is None

    cache.save_jpeg_classification(folder, JPEGClassification.NEEDS_EDITING)
    cache.save_jpeg_classification(folder, JPEGClassification.FINAL_AS_SHOT)

    assert cache.get_jpeg_classification(folder) is JPEGClassification.FINAL_AS_SHOT
    assert cache.statistics().classification_count == 1


def test_invalidate_exact_path(tmp_path, make_file, cache):
    a = make_file(tmp_path / "A.NEF")
    b = make_file(tmp_path / "B.NEF")
    cache.put(Photo(a, FileKind.RAW))
    cache.put(Photo(b, FileKind.RAW))

    cache.invalidate(a)

    assert cache.get(a) is None
    assert cache.get(b) is not None


def test_invalidate_subtree_matches_whole_components(tmp_path, cache):
    lib = tmp_path / "lib"
    paths = [lib / "2023", lib / "2023" / "jan", lib / "2023-extra", lib / "2024"]
    for p in paths:
        cache.put_scan_summary(p, p.name, 1, 0)
        cache.put(Photo(p / "X.NEF", FileKind.RAW), 1.0)
        cache.save_jpeg_classification(p, JPEGClassification.EDITED_EXPORT)

    cache.invalidate_subtree(lib / "2023")

    assert cache.get_scan_summary(lib / "2023") is None
    assert cache.get_scan_summary(lib / "2023" / "jan") is None
    assert cache.get_scan_summary(lib / "2023-extra") is not None
    assert cache.get_jpeg_classification(lib / "2023" / "jan") is None
    assert cache.get_jpeg_classification(lib / "2024") is JPEGClassification.EDITED_EXPORT
    stats = cache.statistics()
    assert stats.photo_count == 2
    assert stats.folder_count == 2
    assert stats.classification_count == 2


def test_clear_all(tmp_path, make_file, cache):
    raw = make_file(tmp_path / "X.NEF")
    cache.put(Photo(raw, FileKind.RAW))
    cache.put_scan_summary(tmp_path, tmp_path.name, 1, 0)
    cache.save_jpeg_classification(tmp_path, JPEGClassification.NEEDS_EDITING)

    cache.clear_all()

    stats = cache.statistics()
    assert (stats.photo_count, stats.folder_count, stats.classification_count) == (0, 0, 0)
    assert stats.storage_bytes > 0
    assert cache.get(raw) is None


def test_put_collection_persists_tree(tmp_path, make_file, cache):
    root = tmp_path / "lib"
    raw = make_file(root / "A.NEF")
    jpeg = make_file(root / "exports" / "a.jpg")
    child = Collection(
        path=root / "exports",
        photos=[Photo(jpeg, FileKind.JPEG, EditStatus.standalone_jpeg(JPEGClassification.EDITED_EXPORT))],
        parent_path=root,
        jpeg_classification=JPEGClassification.EDITED_EXPORT,
    )
    tree = Collection(path=root, photos=[Photo(raw, FileKind.RAW)], children=[child], is_root_folder=True)

    cache.put_collection(tree)

    summary = cache.get_scan_summary(root)
    assert (summary.photo_count, summary.edited_count) == (2, 1)
    assert summary.has_children
    assert summary.is_root_folder
    assert cache.get_scan_summary(root / "exports").parent_path == root
    assert cache.get_jpeg_classification(root / "exports") is JPEGClassification.EDITED_EXPORT
    assert cache.get(jpeg) == child.photos[0]


def test_put_collection_rolls_back_on_failure(tmp_path, make_file, cache, monkeypatch):
    root = tmp_path / "lib"
    raw = make_file(root / "A.NEF")
    tree = Collection(path=root, photos=[Photo(raw, FileKind.RAW)])

    def broken(self, *args):
        raise sqlite3.OperationalError("disk I/O error")
    monkeypatch.setattr(DBOperations, "upsert_scan_result", broken)

    cache.put_collection(tree)

    assert cache.statistics().photo_count == 0
    assert cache.get(raw) is None


def test_put_classification_refreshes_ancestor_summaries(tmp_path, make_file, cache):
    root = tmp_path / "lib"
    raw = make_file(root / "A.NEF")
    jpeg = make_file(root / "exports" / "a.jpg")
    child = Collection(
        path=root / "exports",
        photos=[Photo(jpeg, FileKind.JPEG, EditStatus.standalone_jpeg())],
        parent_path=root,
    )
    tree = Collection(path=root, photos=[Photo(raw, FileKind.RAW)], children=[child],
                      is_root_folder=True, scanned_at=1000.0)
    cache.put_collection(tree)
    assert cache.get_scan_summary(root).edited_count == 0

    child.apply_jpeg_classification(JPEGClassification.EDITED_EXPORT)
    cache.put_classification([tree, child])

    summary = cache.get_scan_summary(root)
    assert (summary.photo_count, summary.edited_count) == (2, 1)
    assert summary.scan_date == 1000.0
    assert summary.is_root_folder
    assert cache.get_scan_summary(root / "exports").edited_count == 1
    assert cache.get_jpeg_classification(root / "exports") is JPEGClassification.EDITED_EXPORT
    assert cache.get(jpeg).status.classification is JPEGClassification.EDITED_EXPORT


def test_put_photos_skips_vanished_files(tmp_path, make_file, cache):
    a = make_file(tmp_path / "A.NEF")
    gone = Photo(tmp_path / "gone.NEF", FileKind.RAW)

    cache.put_photos([Photo(a, FileKind.RAW), gone], tmp_path)

    assert cache.statistics().photo_count == 1


def test_concurrent_writers(tmp_path, make_file, cache):
    raws = [make_file(tmp_path / f"IMG_{i:03d}.NEF") for i in range(40)]

    def worker(chunk):
        for raw in chunk:
            cache.put(Photo(raw, FileKind.RAW))
            cache.get(raw)

    threads = [threading.Thread(target=worker, args=(raws[i::4],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.statistics().photo_count == 40


def test_unavailable_cache_degrades(tmp_path, make_file):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cache = EditCache(blocker / "cache.sqlite")

    assert not cache.open()
    assert not cache.is_available

    raw = make_file(tmp_path / "X.NEF")
    cache.put(Photo(raw, FileKind.RAW))
    assert cache.get(raw) is None
    assert cache.needs_rescan(raw)
    assert not cache.is_scan_valid(tmp_path)
    assert cache.get_jpeg_classification(tmp_path) is None
    cache.invalidate_subtree(tmp_path)
    cache.clear_all()
    assert cache.statistics().photo_count == 0
    cache.close()


def test_reopen_keeps_data(tmp_path, make_file):
    raw = make_file(tmp_path / "X.NEF")
    db_path = tmp_path / "home" / "cache.sqlite"

    with EditCache(db_path) as first:
        first.put(Photo(raw, FileKind.RAW, EditStatus.edited(DetectionMethod.XMP_SIDECAR), [tmp_path / "X.xmp"]))

    with EditCache(db_path) as second:
        assert second.get(raw).status == EditStatus.edited(DetectionMethod.XMP_SIDECAR)
