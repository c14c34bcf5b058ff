import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional


class FileKind(str, Enum):
    RAW = 'raw'
    EDITED = 'edited'
    JPEG = 'jpeg'


class DetectionMethod(str, Enum):
    XMP_SIDECAR = 'xmp-sidecar'
    FORMAT_CONVERSION = 'format-conversion'
    VERSIONING = 'versioning'
    NAMING_PATTERN = 'naming-pattern'

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]


class JPEGClassification(str, Enum):
    NEEDS_EDITING = 'needs-editing'
    EDITED_EXPORT = 'edited-export'
    FINAL_AS_SHOT = 'final-as-shot'

    @property
    def label(self) -> str:
        return _CLASSIFICATION_LABELS[self]


_METHOD_LABELS = {
    DetectionMethod.XMP_SIDECAR: "XMP Sidecar",
    DetectionMethod.FORMAT_CONVERSION: "Format Conversion",
    DetectionMethod.VERSIONING: "Version Numbering",
    DetectionMethod.NAMING_PATTERN: "Naming Pattern",
}

_CLASSIFICATION_LABELS = {
    JPEGClassification.NEEDS_EDITING: "Needs Editing",
    JPEGClassification.EDITED_EXPORT: "Edited Export",
    JPEGClassification.FINAL_AS_SHOT: "Final (As Shot)",
}


class StatusKind(str, Enum):
    UNEDITED = 'unedited'
    EDITED = 'edited'
    IN_CAMERA_JPEG = 'in_camera_jpeg'
    STANDALONE_JPEG = 'standalone_jpeg'


@dataclass(frozen=True)
class EditStatus:
    """
    Closed set of outcomes for a photo.

    Build instances through the constructors below; ``method`` is only set for
    EDITED and ``classification`` only for STANDALONE_JPEG (None there means
    the user has not been asked yet).
    """
    kind: StatusKind
    method: Optional[DetectionMethod] = None
    classification: Optional[JPEGClassification] = None

    def __post_init__(self):
        if self.method is not None and self.kind is not StatusKind.EDITED:
            raise ValueError(f"Detection method is only valid for edited photos, not {self.kind.value}")
        if self.kind is StatusKind.EDITED and self.method is None:
            raise ValueError("Edited status requires a detection method")
        if self.classification is not None and self.kind is not StatusKind.STANDALONE_JPEG:
            raise ValueError(f"JPEG classification is only valid for standalone JPEGs, not {self.kind.value}")

    @classmethod
    def unedited(cls) -> "EditStatus":
        return cls(StatusKind.UNEDITED)

    @classmethod
    def edited(cls, method: DetectionMethod) -> "EditStatus":
        return cls(StatusKind.EDITED, method=method)

    @classmethod
    def in_camera_jpeg(cls) -> "EditStatus":
        return cls(StatusKind.IN_CAMERA_JPEG)

    @classmethod
    def standalone_jpeg(cls, classification: Optional[JPEGClassification] = None) -> "EditStatus":
        return cls(StatusKind.STANDALONE_JPEG, classification=classification)

    @property
    def is_edited(self) -> bool:
        # Exports and finished as-shot JPEGs both count as done.
        if self.kind is StatusKind.EDITED:
            return True
        if self.kind is StatusKind.STANDALONE_JPEG:
            return self.classification in (JPEGClassification.EDITED_EXPORT, JPEGClassification.FINAL_AS_SHOT)
        return False

    @property
    def label(self) -> str:
        if self.kind is StatusKind.EDITED:
            return f"Edited ({self.method.label})"
        if self.kind is StatusKind.IN_CAMERA_JPEG:
            return "In-Camera JPEG"
        if self.kind is StatusKind.STANDALONE_JPEG:
            if self.classification is None:
                return "Standalone JPEG (Unclassified)"
            return f"Standalone JPEG ({self.classification.label})"
        return "Unedited"


def stable_id(path: Path) -> uuid.UUID:
    """Same path, same id, across scans and cache round-trips."""
    return uuid.uuid5(uuid.NAMESPACE_URL, str(path))


@dataclass
class Photo:
    path: Path
    kind: FileKind
    status: EditStatus = field(default_factory=EditStatus.unedited)
    edited_variants: List[Path] = field(default_factory=list)
    in_camera_jpegs: List[Path] = field(default_factory=list)
    id: Optional[uuid.UUID] = None
    # mtime observed when the status was computed; not part of identity
    mtime: Optional[float] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        self.path = Path(self.path)
        if self.id is None:
            self.id = stable_id(self.path)
        overlap = set(self.edited_variants) & set(self.in_camera_jpegs)
        if overlap:
            raise ValueError(f"Paths cannot be both edited variants and in-camera JPEGs: {sorted(map(str, overlap))}")

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class Progress:
    total_photos: int = 0
    edited_photos: int = 0

    def __post_init__(self):
        if not 0 <= self.edited_photos <= self.total_photos:
            raise ValueError(f"Invalid progress {self.edited_photos}/{self.total_photos}")

    @property
    def percentage(self) -> float:
        if self.total_photos == 0:
            return 0.0
        return self.edited_photos / self.total_photos * 100

    @property
    def unedited_photos(self) -> int:
        return self.total_photos - self.edited_photos


@dataclass
class Collection:
    """
    Scan result for one directory and, recursively, its subdirectories.

    Progress is derived from the subtree every time it is read, so edits to
    ``photos`` or ``children`` are always reflected.
    """
    path: Path
    name: str = ""
    photos: List[Photo] = field(default_factory=list)
    children: List["Collection"] = field(default_factory=list)
    parent_path: Optional[Path] = None
    is_root_folder: bool = False
    jpeg_classification: Optional[JPEGClassification] = None
    skipped: List[Path] = field(default_factory=list)
    id: Optional[uuid.UUID] = None
    # epoch seconds when this folder's listing was read
    scanned_at: Optional[float] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        self.path = Path(self.path)
        if not self.name:
            self.name = self.path.name
        if self.id is None:
            self.id = stable_id(self.path)

    @property
    def progress(self) -> Progress:
        total = len(self.photos)
        edited = sum(1 for p in self.photos if p.status.is_edited)
        for child in self.children:
            child_progress = child.progress
            total += child_progress.total_photos
            edited += child_progress.edited_photos
        return Progress(total, edited)

    def subtree_progress(self) -> Dict[uuid.UUID, Progress]:
        """Progress of this collection and every descendant, keyed by id, from one post-order pass."""
        totals: Dict[uuid.UUID, Progress] = {}

        def visit(node: "Collection") -> Progress:
            total = len(node.photos)
            edited = sum(1 for p in node.photos if p.status.is_edited)
            for child in node.children:
                child_progress = visit(child)
                total += child_progress.total_photos
                edited += child_progress.edited_photos
            totals[node.id] = Progress(total, edited)
            return totals[node.id]

        visit(self)
        return totals

    @property
    def subdirectory_paths(self) -> List[Path]:
        return [c.path for c in self.children]

    @property
    def has_only_standalone_jpegs(self) -> bool:
        return bool(self.photos) and all(p.status.kind is StatusKind.STANDALONE_JPEG for p in self.photos)

    @property
    def needs_jpeg_classification(self) -> bool:
        return self.has_only_standalone_jpegs and self.jpeg_classification is None

    def walk(self) -> Iterator["Collection"]:
        """Pre-order traversal of this collection and every descendant."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, collection_id: uuid.UUID) -> Optional["Collection"]:
        for collection in self.walk():
            if collection.id == collection_id:
                return collection
        return None

    def find_path(self, path: Path) -> Optional["Collection"]:
        path = Path(path)
        for collection in self.walk():
            if collection.path == path:
                return collection
        return None

    def lineage(self, collection_id: uuid.UUID) -> List["Collection"]:
        """Nodes from this collection down to the one with collection_id, or [] if it is not here."""
        if self.id == collection_id:
            return [self]
        for child in self.children:
            chain = child.lineage(collection_id)
            if chain:
                return [self] + chain
        return []

    def apply_jpeg_classification(self, classification: JPEGClassification):
        """Marks the folder and each of its standalone JPEGs with the user's answer."""
        if not self.has_only_standalone_jpegs:
            raise ValueError(f"{self.path} does not hold only standalone JPEGs")
        self.jpeg_classification = classification
        for photo in self.photos:
            if photo.status.kind is StatusKind.STANDALONE_JPEG:
                photo.status = EditStatus.standalone_jpeg(classification)


class ScanProgress(NamedTuple):
    """(current_folder, folders_scanned, total_folders); total is None while unknown."""
    current_folder: str = ""
    folders_scanned: int = 0
    total_folders: Optional[int] = None

    @property
    def is_indeterminate(self) -> bool:
        return self.total_folders is None

    @property
    def percent_complete(self) -> float:
        if not self.total_folders:
            return 0.0
        return self.folders_scanned / self.total_folders * 100


@dataclass
class CachedScanResult:
    folder_path: Path
    name: str
    scan_date: float        # epoch seconds
    photo_count: int
    edited_count: int
    has_children: bool
    parent_path: Optional[Path] = None
    is_root_folder: bool = False

    @property
    def scanned_at(self) -> datetime:
        return datetime.fromtimestamp(self.scan_date)


@dataclass
class CacheStatistics:
    photo_count: int = 0
    folder_count: int = 0
    classification_count: int = 0
    storage_bytes: int = 0

    @property
    def formatted_size(self) -> str:
        size = float(self.storage_bytes)
        for unit in ("bytes", "KB", "MB", "GB"):
            if size < 1024 or unit == "GB":
                return f"{int(size)} {unit}" if unit == "bytes" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"
