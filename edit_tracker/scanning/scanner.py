import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .. import config
from ..cache import EditCache, file_mtime
from ..detection.engine import DetectionEngine
from ..exceptions import InvalidDirectory, NotAccessible, ScanCancelled, ScanError, SubtreeSkipped
from ..models import Collection, EditStatus, FileKind, JPEGClassification, Photo, ScanProgress

ProgressCallback = Callable[[ScanProgress], None]


@dataclass
class _Listing:
    raw_files: List[Path]
    jpeg_files: List[Path]
    subdirectories: List[Path]


@dataclass
class _TreeWalk:
    """State shared by every folder visited during one scan_tree call."""
    total_folders: Optional[int]
    callback: Optional[ProgressCallback]
    cancel_event: Optional[threading.Event]
    folders_scanned: int = 0


def _is_hidden(name: str) -> bool:
    return name.startswith('.')


def _is_package(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in config.PACKAGE_EXTS


class DirectoryScanner:
    def __init__(self,
                 engine: Optional[DetectionEngine] = None,
                 cache: Optional[EditCache] = None,
                 max_workers: int = config.DETECTION_WORKERS):
        self.engine = engine or DetectionEngine()
        self.cache = cache
        self.max_workers = max_workers

    # --- Public API ---

    def scan_shallow(self, directory: Path) -> Collection:
        """
        Scans the immediate contents of one directory. Subdirectories are
        listed but not descended into, and are not part of the result.
        """
        directory = Path(directory)
        scanned_at = self._listing_time()
        listing = self._list_directory(directory)
        photos, classification = self._build_photos(directory, listing)
        return Collection(
            path=directory,
            name=directory.name,
            photos=photos,
            jpeg_classification=classification,
            scanned_at=scanned_at,
        )

    def scan_tree(self,
                  root: Path,
                  is_root_folder: bool = False,
                  progress_callback: Optional[ProgressCallback] = None,
                  cancel_event: Optional[threading.Event] = None,
                  parent_path: Optional[Path] = None) -> Collection:
        """
        Recursively scans root and every visible subdirectory.

        Root-folder scans count folders first so progress is determinate.
        Errors at root propagate; a subdirectory that fails is skipped,
        logged and recorded on its parent's ``skipped`` list. Setting
        cancel_event stops the walk before the next subdirectory with
        ScanCancelled.
        """
        root = Path(root)
        t0 = time.perf_counter()
        logging.info(f"Scanning tree {root} (root={is_root_folder})...")
        self._check_cancelled(cancel_event)

        total = self.count_folders(root) if is_root_folder else None
        walk = _TreeWalk(total_folders=total, callback=progress_callback, cancel_event=cancel_event)
        collection = self._scan_recursive(root, parent_path, is_root_folder, walk)

        progress = collection.progress
        logging.info(
            f"Scan complete: {root} - {walk.folders_scanned} folders, "
            f"{progress.total_photos} photos, {progress.edited_photos} edited "
            f"in {time.perf_counter() - t0:.2f}s"
        )
        return collection

    def count_folders(self, root: Path) -> int:
        """Counts root plus every visible, non-package subdirectory beneath it."""
        count = 0
        stack = [Path(root)]
        while stack:
            current = stack.pop()
            count += 1
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                continue
            for e in entries:
                if _is_hidden(e.name) or _is_package(e.name):
                    continue
                try:
                    if e.is_dir(follow_symlinks=False):
                        stack.append(Path(e.path))
                except OSError:
                    continue
        return count

    # --- Tree walk ---

    def _scan_recursive(self,
                        directory: Path,
                        parent_path: Optional[Path],
                        is_root_folder: bool,
                        walk: _TreeWalk) -> Collection:
        walk.folders_scanned += 1
        if walk.callback:
            walk.callback(ScanProgress(directory.name, walk.folders_scanned, walk.total_folders))

        scanned_at = self._listing_time()
        listing = self._list_directory(directory)
        photos, classification = self._build_photos(directory, listing)

        children: List[Collection] = []
        skipped: List[Path] = []
        for subdir in listing.subdirectories:
            self._check_cancelled(walk.cancel_event)
            try:
                children.append(self._scan_recursive(subdir, directory, False, walk))
            except (ScanError, OSError) as e:
                skip = SubtreeSkipped(subdir, e)
                logging.warning(str(skip))
                skipped.append(subdir)

        return Collection(
            path=directory,
            name=directory.name,
            photos=photos,
            children=children,
            parent_path=parent_path,
            is_root_folder=is_root_folder,
            jpeg_classification=classification,
            skipped=skipped,
            scanned_at=scanned_at,
        )

    def _listing_time(self) -> float:
        # Backdated by the mtime tolerance: filesystem clocks lag time.time() slightly,
        # and a write racing the listing must still invalidate this scan.
        return time.time() - config.MTIME_EPSILON_SECONDS

    def _check_cancelled(self, cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelled("Scan cancelled")

    # --- Single directory ---

    def _list_directory(self, directory: Path) -> _Listing:
        if not directory.is_dir():
            raise InvalidDirectory(directory)
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            raise NotAccessible(directory, e) from e

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())

        listing = _Listing([], [], [])
        for e in entries:
            if _is_hidden(e.name):
                continue
            try:
                if e.is_dir(follow_symlinks=False):
                    if not _is_package(e.name):
                        listing.subdirectories.append(Path(e.path))
                    continue
                if not e.is_file(follow_symlinks=False):
                    continue
            except OSError:
                continue

            ftype = config.EXT_TO_TYPE.get(os.path.splitext(e.name)[1].lower())
            if ftype == FileKind.RAW.value:
                listing.raw_files.append(Path(e.path))
            elif ftype == FileKind.JPEG.value:
                listing.jpeg_files.append(Path(e.path))
        return listing

    def _build_photos(self, directory: Path, listing: _Listing) -> Tuple[List[Photo], Optional[JPEGClassification]]:
        """Returns the folder's photos and, for JPEG-only folders, the stored user classification."""
        if listing.raw_files:
            return self._classify_raws(directory, listing.raw_files), None

        if not listing.jpeg_files:
            return [], None

        # No RAW at all: every JPEG is standalone and waits for the user's answer.
        classification = self.cache.get_jpeg_classification(directory) if self.cache else None
        status = EditStatus.standalone_jpeg(classification or JPEGClassification.NEEDS_EDITING)
        photos = [
            Photo(path=jpeg, kind=FileKind.JPEG, status=status, mtime=file_mtime(jpeg))
            for jpeg in listing.jpeg_files
        ]
        return photos, classification

    def _classify_raws(self, directory: Path, raw_files: List[Path]) -> List[Photo]:
        # Cached results are only trusted while nothing in the folder changed,
        # since a RAW's status depends on its siblings as well as on itself.
        use_cache = (
            self.cache is not None
            and self.cache.is_available
            and self.cache.is_scan_valid(directory)
        )

        def classify(raw: Path) -> Photo:
            if use_cache:
                cached = self.cache.get(raw)
                if cached is not None and cached.kind is FileKind.RAW:
                    return cached
            mtime = file_mtime(raw)
            status, edited, in_camera = self.engine.classify(raw, directory)
            return Photo(
                path=raw,
                kind=FileKind.RAW,
                status=status,
                edited_variants=edited,
                in_camera_jpegs=in_camera,
                mtime=mtime,
            )

        if self.max_workers <= 1 or len(raw_files) < 2:
            return [classify(raw) for raw in raw_files]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(classify, raw_files))
