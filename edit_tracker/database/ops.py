import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..models import (
    CachedScanResult,
    DetectionMethod,
    EditStatus,
    FileKind,
    JPEGClassification,
    Photo,
    StatusKind,
)

TABLES = ('photo_metadata', 'jpeg_classifications', 'scan_results')
PATH_COLUMNS = {
    'photo_metadata': 'path',
    'jpeg_classifications': 'folder_path',
    'scan_results': 'folder_path',
}


def encode_status(status: EditStatus) -> Tuple[str, Optional[str], Optional[str]]:
    """EditStatus -> (edit_status, detection_method, jpeg_classification) columns."""
    method = status.method.value if status.method else None
    classification = status.classification.value if status.classification else None
    return status.kind.value, method, classification


def decode_status(kind: str, method: Optional[str], classification: Optional[str]) -> EditStatus:
    """
    Inverse of encode_status. Rows written by an older or newer schema degrade
    instead of failing: an edited row without a known method reads as unedited,
    a standalone JPEG without a known classification reads as needs-editing.
    """
    if kind == StatusKind.EDITED.value:
        try:
            return EditStatus.edited(DetectionMethod(method))
        except ValueError:
            return EditStatus.unedited()
    if kind == StatusKind.IN_CAMERA_JPEG.value:
        return EditStatus.in_camera_jpeg()
    if kind == StatusKind.STANDALONE_JPEG.value:
        try:
            return EditStatus.standalone_jpeg(JPEGClassification(classification))
        except ValueError:
            return EditStatus.standalone_jpeg(JPEGClassification.NEEDS_EDITING)
    return EditStatus.unedited()


def encode_paths(paths: List[Path]) -> str:
    return json.dumps([str(p) for p in paths])


def decode_paths(payload: Optional[str]) -> List[Path]:
    if not payload:
        return []
    try:
        return [Path(p) for p in json.loads(payload)]
    except (ValueError, TypeError):
        logging.debug(f"Discarding malformed path list: {payload!r}")
        return []


class DBOperations:
    """Row-level SQL for the cache tables. Callers own locking and transactions."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # --- photo_metadata ---

    def upsert_photo(self, photo: Photo, mtime: float):
        """Inserts or replaces the cached result for photo.path, keeping created_at."""
        now = time.time()
        status, method, classification = encode_status(photo.status)
        self.conn.execute("""
            INSERT INTO photo_metadata (
                path, name, type, mtime, edit_status, detection_method, jpeg_classification,
                edited_variants_json, in_camera_jpegs_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                name = excluded.name,
                type = excluded.type,
                mtime = excluded.mtime,
                edit_status = excluded.edit_status,
                detection_method = excluded.detection_method,
                jpeg_classification = excluded.jpeg_classification,
                edited_variants_json = excluded.edited_variants_json,
                in_camera_jpegs_json = excluded.in_camera_jpegs_json,
                updated_at = excluded.updated_at
        """, (
            str(photo.path), photo.name, photo.kind.value, mtime, status, method, classification,
            encode_paths(photo.edited_variants), encode_paths(photo.in_camera_jpegs),
            now, now
        ))

    def fetch_photo(self, path: Path) -> Optional[Tuple[Photo, float]]:
        """Returns (photo, cached_mtime) or None."""
        cur = self.conn.cursor()
        cur.execute("""
            SELECT type, mtime, edit_status, detection_method, jpeg_classification,
                   edited_variants_json, in_camera_jpegs_json
            FROM photo_metadata WHERE path = ?
        """, (str(path),))
        row = cur.fetchone()
        if row is None:
            return None

        ftype, mtime, status, method, classification, edited_json, in_camera_json = row
        try:
            kind = FileKind(ftype)
        except ValueError:
            logging.debug(f"Unknown file type {ftype!r} cached for {path}")
            return None

        photo = Photo(
            path=Path(path),
            kind=kind,
            status=decode_status(status, method, classification),
            edited_variants=decode_paths(edited_json),
            in_camera_jpegs=decode_paths(in_camera_json),
        )
        return photo, mtime

    def fetch_photo_mtime(self, path: Path) -> Optional[float]:
        cur = self.conn.cursor()
        cur.execute("SELECT mtime FROM photo_metadata WHERE path = ?", (str(path),))
        row = cur.fetchone()
        return row[0] if row else None

    # --- scan_results ---

    def upsert_scan_result(self,
                           folder_path: Path,
                           name: str,
                           scan_date: float,
                           photo_count: int,
                           edited_count: int,
                           has_children: bool,
                           parent_path: Optional[Path],
                           is_root: bool):
        now = time.time()
        self.conn.execute("""
            INSERT INTO scan_results (
                folder_path, name, scan_date, photo_count, edited_count,
                has_children, parent_path, is_root, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(folder_path) DO UPDATE SET
                name = excluded.name,
                scan_date = excluded.scan_date,
                photo_count = excluded.photo_count,
                edited_count = excluded.edited_count,
                has_children = excluded.has_children,
                parent_path = excluded.parent_path,
                is_root = excluded.is_root,
                updated_at = excluded.updated_at
        """, (
            str(folder_path), name, scan_date, photo_count, edited_count,
            int(has_children), str(parent_path) if parent_path else None, int(is_root),
            now, now
        ))

    def fetch_scan_result(self, folder_path: Path) -> Optional[CachedScanResult]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT name, scan_date, photo_count, edited_count, has_children, parent_path, is_root
            FROM scan_results WHERE folder_path = ?
        """, (str(folder_path),))
        row = cur.fetchone()
        if row is None:
            return None

        name, scan_date, photo_count, edited_count, has_children, parent_path, is_root = row
        return CachedScanResult(
            folder_path=Path(folder_path),
            name=name,
            scan_date=scan_date,
            photo_count=photo_count,
            edited_count=edited_count,
            has_children=bool(has_children),
            parent_path=Path(parent_path) if parent_path else None,
            is_root_folder=bool(is_root),
        )

    def fetch_child_scan_results(self, parent_path: Path) -> List[CachedScanResult]:
        cur = self.conn.cursor()
        cur.execute("SELECT folder_path FROM scan_results WHERE parent_path = ? ORDER BY folder_path", (str(parent_path),))
        results = []
        for (folder,) in cur.fetchall():
            result = self.fetch_scan_result(Path(folder))
            if result:
                results.append(result)
        return results

    # --- jpeg_classifications ---

    def upsert_classification(self, folder_path: Path, classification: JPEGClassification):
        now = time.time()
        self.conn.execute("""
            INSERT INTO jpeg_classifications (folder_path, classification, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(folder_path) DO UPDATE SET
                classification = excluded.classification,
                updated_at = excluded.updated_at
        """, (str(folder_path), classification.value, now, now))

    def fetch_classification(self, folder_path: Path) -> Optional[JPEGClassification]:
        cur = self.conn.cursor()
        cur.execute("SELECT classification FROM jpeg_classifications WHERE folder_path = ?", (str(folder_path),))
        row = cur.fetchone()
        if row is None:
            return None
        try:
            return JPEGClassification(row[0])
        except ValueError:
            return None

    # --- Invalidation ---

    def delete_path(self, path: Path) -> Dict[str, int]:
        """Deletes rows keyed exactly on path from every table. Returns rows removed per table."""
        removed = {}
        for table in TABLES:
            column = PATH_COLUMNS[table]
            cur = self.conn.execute(f"DELETE FROM {table} WHERE {column} = ?", (str(path),))
            removed[table] = cur.rowcount
        return removed

    def delete_prefix(self, prefix: Path) -> Dict[str, int]:
        """
        Deletes rows for prefix and everything beneath it from every table.

        Matching is on whole path components (and case-sensitive), so
        /photos/2023 does not take /photos/2023-extra with it.
        """
        exact = str(prefix)
        if exact != os.sep:
            exact = exact.rstrip(os.sep)
        below = exact if exact.endswith(os.sep) else exact + os.sep

        removed = {}
        for table in TABLES:
            column = PATH_COLUMNS[table]
            cur = self.conn.execute(
                f"DELETE FROM {table} WHERE {column} = ? OR substr({column}, 1, length(?)) = ?",
                (exact, below, below),
            )
            removed[table] = cur.rowcount
        return removed

    def clear_all(self):
        for table in TABLES:
            self.conn.execute(f"DELETE FROM {table}")

    # --- Statistics ---

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        cur = self.conn.cursor()
        cur.execute(f"SELECT COUNT(*) FROM {table}")
        return cur.fetchone()[0]

    def fetch_unedited_raws(self) -> List[Tuple[str, str]]:
        """(path, edit_status) for cached RAW files with no edit evidence."""
        cur = self.conn.cursor()
        cur.execute("""
            SELECT path, edit_status FROM photo_metadata
            WHERE type = 'raw' AND edit_status IN ('unedited', 'in_camera_jpeg')
            ORDER BY path
        """)
        return cur.fetchall()

    def fetch_folder_summaries(self) -> List[CachedScanResult]:
        cur = self.conn.cursor()
        cur.execute("SELECT folder_path FROM scan_results ORDER BY folder_path")
        return [r for r in (self.fetch_scan_result(Path(p)) for (p,) in cur.fetchall()) if r]
