import logging
import os
import re
from pathlib import Path
from typing import List, Tuple

from .. import config
from ..models import DetectionMethod


def _edited_siblings(directory: Path) -> List[Path]:
    """Visible regular files in ``directory`` with an edited-type extension, sorted by name."""
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        logging.debug(f"Cannot list {directory}: {e}")
        return []

    files = []
    for e in entries:
        if e.name.startswith('.'):
            continue
        try:
            if not e.is_file():
                continue
        except OSError:
            continue
        if os.path.splitext(e.name)[1].lower() in config.EDITED_EXTS:
            files.append(Path(e.path))
    files.sort(key=lambda p: p.name)
    return files


def _mtime(path: Path):
    try:
        return path.stat().st_mtime
    except OSError:
        return None


class DetectionStrategy:
    """
    One heuristic answering "does this RAW file have an edited counterpart here?".

    Implementations only read the filesystem, so one instance can serve many
    threads at once.
    """
    method: DetectionMethod

    def detect(self, raw_file: Path, directory: Path) -> List[Path]:
        raise NotImplementedError


class XMPSidecarDetector(DetectionStrategy):
    method = DetectionMethod.XMP_SIDECAR

    def detect(self, raw_file: Path, directory: Path) -> List[Path]:
        sidecar = directory / f"{raw_file.stem}{config.SIDECAR_EXT}"
        if sidecar.is_file():
            return [sidecar]

        # Sidecars written as IMG_0001.XMP on case-sensitive filesystems
        try:
            with os.scandir(directory) as it:
                for e in it:
                    stem, ext = os.path.splitext(e.name)
                    if stem == raw_file.stem and ext.lower() == config.SIDECAR_EXT and e.is_file():
                        return [Path(e.path)]
        except OSError as e:
            logging.debug(f"Cannot list {directory}: {e}")
        return []


class FormatConversionDetector(DetectionStrategy):
    """
    Same-basename files in an edited format (IMG_0001.NEF -> IMG_0001.jpg).

    A converted file whose mtime is within IN_CAMERA_WINDOW_SECONDS of the RAW
    was written by the camera alongside it and is not evidence of an edit.
    """
    method = DetectionMethod.FORMAT_CONVERSION

    def detect(self, raw_file: Path, directory: Path) -> List[Path]:
        edited, _ = self.detect_with_in_camera_check(raw_file, directory)
        return edited

    def detect_with_in_camera_check(self, raw_file: Path, directory: Path) -> Tuple[List[Path], List[Path]]:
        """Returns (edited_variants, in_camera_jpegs)."""
        raw_mtime = _mtime(raw_file)
        if raw_mtime is None:
            return [], []

        edited: List[Path] = []
        in_camera: List[Path] = []
        for candidate in _edited_siblings(directory):
            if candidate.stem != raw_file.stem:
                continue
            if candidate.suffix.lower() in config.RAW_EXTS:
                continue

            converted_mtime = _mtime(candidate)
            if converted_mtime is not None and abs(converted_mtime - raw_mtime) < config.IN_CAMERA_WINDOW_SECONDS:
                in_camera.append(candidate)
            else:
                edited.append(candidate)
        return edited, in_camera


class VersioningDetector(DetectionStrategy):
    """Numbered exports: {base}-2, {base}_v2, {base} 2 (case-sensitive)."""
    method = DetectionMethod.VERSIONING

    def detect(self, raw_file: Path, directory: Path) -> List[Path]:
        base = re.escape(raw_file.stem)
        patterns = [re.compile(f"{base}{suffix}") for suffix in config.VERSION_PATTERNS]

        return [
            candidate for candidate in _edited_siblings(directory)
            if any(p.fullmatch(candidate.stem) for p in patterns)
        ]


class NamingConventionDetector(DetectionStrategy):
    """Files whose name mentions both the basename and "edit". Folder names never count."""
    method = DetectionMethod.NAMING_PATTERN

    def detect(self, raw_file: Path, directory: Path) -> List[Path]:
        base = raw_file.stem.lower()
        return [
            candidate for candidate in _edited_siblings(directory)
            if base in candidate.name.lower() and config.EDIT_MARKER in candidate.name.lower()
        ]
