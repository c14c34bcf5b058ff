"""
Persistent cache of detection results.

Every public method is safe to call from several threads: access to the
SQLite connection is serialized through DBManager.lock, and batch writes run
in a single transaction. The cache never raises to scanning code. If the
database cannot be opened, reads miss and writes are dropped; if a write
fails it is rolled back and logged.
"""
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from . import config
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import CacheUnavailable
from .models import CachedScanResult, CacheStatistics, Collection, JPEGClassification, Photo


def file_mtime(path: Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


class EditCache:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_manager = DBManager(self.db_path)
        self._ops: Optional[DBOperations] = None

    @classmethod
    def default(cls) -> "EditCache":
        return cls(config.DEFAULT_CACHE_DIR / config.CACHE_DB_NAME)

    # --- Lifecycle ---

    def open(self) -> bool:
        """Opens the store. Returns False (and stays usable as a no-op cache) if it cannot."""
        try:
            conn = self.db_manager.connect()
        except CacheUnavailable as e:
            logging.error(f"{e}. Continuing without cache.")
            self._ops = None
            return False
        self._ops = DBOperations(conn)
        return True

    def close(self):
        with self.db_manager.lock:
            self._ops = None
            self.db_manager.close()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def is_available(self) -> bool:
        return self._ops is not None

    # --- Internal session helpers ---

    @contextmanager
    def _read(self) -> Iterator[DBOperations]:
        with self.db_manager.lock:
            if self._ops is None:
                raise CacheUnavailable(self.db_path)
            yield self._ops

    @contextmanager
    def _write(self) -> Iterator[DBOperations]:
        """One transaction: committed on success, rolled back on any error."""
        with self.db_manager.lock:
            if self._ops is None:
                raise CacheUnavailable(self.db_path)
            conn = self._ops.conn
            try:
                yield self._ops
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    # --- Photo metadata ---

    def get(self, path: Path) -> Optional[Photo]:
        """
        Returns the cached Photo for path if the file's mtime is within
        MTIME_EPSILON_SECONDS of the cached one; otherwise None.
        """
        if not self.is_available:
            return None
        current = file_mtime(path)
        if current is None:
            return None

        try:
            with self._read() as ops:
                cached = ops.fetch_photo(Path(path))
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.warning(f"Cache read failed for {path}: {e}")
            return None

        if cached is None:
            logging.debug(f"Cache miss: {Path(path).name}")
            return None

        photo, cached_mtime = cached
        if abs(current - cached_mtime) > config.MTIME_EPSILON_SECONDS:
            logging.debug(f"Cache stale (file modified): {Path(path).name}")
            return None

        logging.debug(f"Cache hit: {Path(path).name}")
        photo.mtime = cached_mtime
        return photo

    def put(self, photo: Photo, modification_time: Optional[float] = None):
        """Upserts the result for photo.path. Defaults to the file's current mtime."""
        if not self.is_available:
            return
        mtime = modification_time if modification_time is not None else photo.mtime
        if mtime is None:
            mtime = file_mtime(photo.path)
        if mtime is None:
            logging.debug(f"Not caching {photo.path}: file is gone")
            return

        try:
            with self._write() as ops:
                ops.upsert_photo(photo, mtime)
            logging.debug(f"Cache write: {photo.name}")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to cache {photo.path}: {e}")

    def put_photos(self, photos: Iterable[Photo], folder: Path):
        """Batch upsert in one transaction."""
        if not self.is_available:
            return
        count = 0
        try:
            with self._write() as ops:
                for photo in photos:
                    if self._upsert_photo(ops, photo):
                        count += 1
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to cache photos from {folder}: {e}")
            return
        logging.info(f"Cached {count} photos from {Path(folder).name}")

    def needs_rescan(self, path: Path) -> bool:
        """True if path is not cached or its mtime moved by more than MTIME_EPSILON_SECONDS."""
        if not self.is_available:
            return True
        current = file_mtime(path)
        if current is None:
            return True

        try:
            with self._read() as ops:
                cached_mtime = ops.fetch_photo_mtime(Path(path))
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.warning(f"Cache read failed for {path}: {e}")
            return True

        if cached_mtime is None:
            return True
        return abs(current - cached_mtime) > config.MTIME_EPSILON_SECONDS

    # --- Scan summaries ---

    def put_scan_summary(self,
                         folder_path: Path,
                         name: str,
                         photo_count: int,
                         edited_count: int,
                         has_children: bool = False,
                         parent_path: Optional[Path] = None,
                         is_root_folder: bool = False,
                         scan_date: Optional[float] = None):
        if not self.is_available:
            return
        try:
            with self._write() as ops:
                ops.upsert_scan_result(
                    Path(folder_path), name, scan_date if scan_date is not None else time.time(),
                    photo_count, edited_count, has_children, parent_path, is_root_folder,
                )
            logging.debug(f"Cache write: {folder_path}")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to cache scan result for {folder_path}: {e}")

    def get_scan_summary(self, folder_path: Path) -> Optional[CachedScanResult]:
        if not self.is_available:
            return None
        try:
            with self._read() as ops:
                return ops.fetch_scan_result(Path(folder_path))
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.warning(f"Cache read failed for {folder_path}: {e}")
            return None

    def get_child_summaries(self, folder_path: Path) -> List[CachedScanResult]:
        if not self.is_available:
            return []
        try:
            with self._read() as ops:
                return ops.fetch_child_scan_results(Path(folder_path))
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.warning(f"Cache read failed for {folder_path}: {e}")
            return []

    def is_scan_valid(self, folder_path: Path) -> bool:
        """
        True only if a summary exists and nothing in the folder is newer than it.

        Every visible entry counts, tracked or not, and so does the folder
        itself: adding, removing or renaming an entry bumps the folder's mtime
        even when the entry keeps an old one.
        """
        summary = self.get_scan_summary(folder_path)
        if summary is None:
            return False

        folder = Path(folder_path)
        folder_mtime = file_mtime(folder)
        if folder_mtime is None or folder_mtime > summary.scan_date:
            return False

        try:
            with os.scandir(folder) as it:
                for e in it:
                    if e.name.startswith('.'):
                        continue
                    try:
                        mtime = e.stat().st_mtime
                    except OSError:
                        continue
                    if mtime > summary.scan_date:
                        logging.debug(f"Scan of {folder} invalidated by {e.name}")
                        return False
        except OSError as e:
            logging.debug(f"Cannot verify scan of {folder}: {e}")
            return False
        return True

    # --- JPEG classifications ---

    def save_jpeg_classification(self, folder_path: Path, classification: JPEGClassification):
        if not self.is_available:
            return
        try:
            with self._write() as ops:
                ops.upsert_classification(Path(folder_path), classification)
            logging.info(f"Saved JPEG classification for {folder_path}: {classification.label}")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to save JPEG classification for {folder_path}: {e}")

    def get_jpeg_classification(self, folder_path: Path) -> Optional[JPEGClassification]:
        if not self.is_available:
            return None
        try:
            with self._read() as ops:
                return ops.fetch_classification(Path(folder_path))
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.warning(f"Cache read failed for {folder_path}: {e}")
            return None

    # --- Whole trees ---

    def put_collection(self, collection: Collection):
        """
        Persists a scanned tree (photos, folder summaries, classifications) in
        one transaction, so a failure leaves the previous state intact.
        """
        if not self.is_available:
            return
        photo_count = folder_count = 0
        totals = collection.subtree_progress()
        try:
            with self._write() as ops:
                for node in collection.walk():
                    for photo in node.photos:
                        if self._upsert_photo(ops, photo):
                            photo_count += 1

                    progress = totals[node.id]
                    ops.upsert_scan_result(
                        node.path, node.name,
                        node.scanned_at if node.scanned_at is not None else time.time(),
                        progress.total_photos, progress.edited_photos,
                        bool(node.children), node.parent_path, node.is_root_folder,
                    )
                    folder_count += 1

                    if node.jpeg_classification is not None:
                        ops.upsert_classification(node.path, node.jpeg_classification)
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to cache collection {collection.path}: {e}")
            return
        logging.info(f"Cached {photo_count} photos in {folder_count} folders under {collection.path}")

    def put_classification(self, lineage: List[Collection]):
        """
        Persists a classified folder, the last entry of lineage, together with
        its photos and the refreshed summaries of it and every ancestor up to
        lineage[0]. Existing summaries keep their scan_date.
        """
        if not self.is_available or not lineage:
            return
        target = lineage[-1]
        totals = lineage[0].subtree_progress()
        try:
            with self._write() as ops:
                ops.upsert_classification(target.path, target.jpeg_classification)
                for photo in target.photos:
                    self._upsert_photo(ops, photo)

                for node in lineage:
                    cached = ops.fetch_scan_result(node.path)
                    if cached is not None:
                        scan_date = cached.scan_date
                    else:
                        scan_date = node.scanned_at if node.scanned_at is not None else time.time()
                    progress = totals[node.id]
                    ops.upsert_scan_result(
                        node.path, node.name, scan_date,
                        progress.total_photos, progress.edited_photos,
                        bool(node.children), node.parent_path, node.is_root_folder,
                    )
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to save JPEG classification for {target.path}: {e}")
            return
        logging.info(f"Saved JPEG classification for {target.path}: {target.jpeg_classification.label}")

    def _upsert_photo(self, ops: DBOperations, photo: Photo) -> bool:
        mtime = photo.mtime if photo.mtime is not None else file_mtime(photo.path)
        if mtime is None:
            return False
        ops.upsert_photo(photo, mtime)
        return True

    # --- Invalidation ---

    def invalidate(self, path: Path):
        """Drops every cached row keyed exactly on path."""
        if not self.is_available:
            return
        try:
            with self._write() as ops:
                ops.delete_path(Path(path))
            logging.debug(f"Invalidated cache for {path}")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to invalidate {path}: {e}")

    def invalidate_subtree(self, path_prefix: Path):
        """Drops cached rows for path_prefix and everything beneath it, atomically."""
        if not self.is_available:
            return
        try:
            with self._write() as ops:
                removed = ops.delete_prefix(Path(path_prefix))
            logging.info(f"Invalidated cache for folder {path_prefix}: {removed}")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to invalidate {path_prefix}: {e}")

    def clear_all(self):
        """Wipes every cached entity and reclaims the space."""
        if not self.is_available:
            return
        try:
            with self._write() as ops:
                ops.clear_all()
            with self._read() as ops:
                ops.conn.execute("VACUUM")
            logging.info("All cache cleared")
        except (sqlite3.Error, CacheUnavailable) as e:
            logging.error(f"Failed to clear cache: {e}")

    # --- Statistics ---

    def statistics(self) -> CacheStatistics:
        if not self.is_available:
            return CacheStatistics()
        try:
            with self._read() as ops:
                return CacheStatistics(
                    photo_count=ops.count_rows('photo_metadata'),
                    folder_count=ops.count_rows('scan_results'),
                    classification_count=ops.count_rows('jpeg_classifications'),
                    storage_bytes=self.db_manager.size_bytes(),
                )
        except (sqlite3.Error, OSError, CacheUnavailable) as e:
            logging.warning(f"Failed to read cache statistics: {e}")
            return CacheStatistics()
