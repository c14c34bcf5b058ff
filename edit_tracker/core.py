import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from .cache import EditCache
from .exceptions import CollectionNotFound, InvalidDirectory, NotAccessible, NotJPEGOnlyFolder
from .models import Collection, JPEGClassification
from .scanning.scanner import DirectoryScanner, ProgressCallback


class LocalFolderAccess:
    """
    Default folder-access provider for plain local paths.

    Sandboxed front-ends swap this for one that resolves their saved
    permission grants; the app only needs a readable absolute root.
    """

    def resolve(self, root: Path) -> Path:
        path = Path(root).expanduser().resolve()
        if not path.is_dir():
            raise InvalidDirectory(path)
        if not os.access(path, os.R_OK | os.X_OK):
            raise NotAccessible(path)
        return path


class EditTrackerApp:
    """
    Keeps the scanned root trees in memory and the cache in sync with them.
    """

    def __init__(self,
                 cache: EditCache,
                 scanner: Optional[DirectoryScanner] = None,
                 access: Optional[LocalFolderAccess] = None):
        self.cache = cache
        self.scanner = scanner or DirectoryScanner(cache=cache)
        self.access = access or LocalFolderAccess()
        self.roots: Dict[Path, Collection] = {}
        # One scan or mutation of the loaded trees at a time
        self._lock = threading.Lock()

    def scan_library(self,
                     root: Path,
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[threading.Event] = None,
                     persist: bool = True) -> Collection:
        """
        Scans a user-selected root folder and its whole tree.
        Root-level scan errors propagate; the cache is updated only on success.
        """
        path = self.access.resolve(root)
        with self._lock:
            collection = self.scanner.scan_tree(
                path,
                is_root_folder=True,
                progress_callback=progress_callback,
                cancel_event=cancel_event,
            )
            self.roots[path] = collection

        if persist:
            self.cache.put_collection(collection)

        if collection.needs_jpeg_classification:
            logging.info(f"{collection.name} contains only JPEGs and needs classification.")
        return collection

    def refresh(self,
                root: Path,
                progress_callback: Optional[ProgressCallback] = None,
                cancel_event: Optional[threading.Event] = None) -> Collection:
        """Drops everything cached under root and scans it again."""
        path = self.access.resolve(root)
        self.cache.invalidate_subtree(path)
        return self.scan_library(path, progress_callback=progress_callback, cancel_event=cancel_event)

    def remove_root(self, root: Path):
        path = Path(root).expanduser().resolve()
        with self._lock:
            self.roots.pop(path, None)
        self.cache.invalidate_subtree(path)
        logging.info(f"Removed root folder {path}")

    def classify_jpegs(self, collection_id: uuid.UUID, classification: JPEGClassification) -> Collection:
        """
        Records the user's answer for a JPEG-only folder: the folder and its
        standalone JPEGs take the classification, and it is persisted so the
        next scan applies it again. Cached summaries of the folder and its
        ancestors are refreshed with the new edited counts.
        """
        with self._lock:
            lineage = self._lineage(collection_id)
            if not lineage:
                raise CollectionNotFound(f"No loaded collection with id {collection_id}")
            target = lineage[-1]
            if not target.has_only_standalone_jpegs:
                raise NotJPEGOnlyFolder(target.path)
            target.apply_jpeg_classification(classification)

        self.cache.put_classification(lineage)
        logging.info(f"Classified JPEGs in {target.name} as {classification.label}")
        return target

    def _lineage(self, collection_id: uuid.UUID) -> List[Collection]:
        for root in self.roots.values():
            chain = root.lineage(collection_id)
            if chain:
                return chain
        return []

    def find_collection(self, collection_id: uuid.UUID) -> Optional[Collection]:
        lineage = self._lineage(collection_id)
        return lineage[-1] if lineage else None

    def pending_classifications(self) -> List[Collection]:
        """Folders holding only standalone JPEGs that the user has not classified."""
        return [
            c for root in self.roots.values() for c in root.walk()
            if c.needs_jpeg_classification
        ]
