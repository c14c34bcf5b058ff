import logging
from pathlib import Path
from typing import List, Tuple

from ..models import EditStatus
from .strategies import (
    FormatConversionDetector,
    NamingConventionDetector,
    VersioningDetector,
    XMPSidecarDetector,
)

DetectionResult = Tuple[EditStatus, List[Path], List[Path]]


class DetectionEngine:
    """
    Resolves the edit status of a RAW file from its siblings.

    Format conversion always runs first because it is the only strategy that
    also finds in-camera JPEGs. The remaining strategies run in the fixed
    order XMP sidecar, versioning, naming pattern; the first one with
    evidence wins.
    """

    def __init__(self):
        self.format_detector = FormatConversionDetector()
        self.fallback_strategies = [
            XMPSidecarDetector(),
            VersioningDetector(),
            NamingConventionDetector(),
        ]

    def classify(self, raw_file: Path, directory: Path) -> DetectionResult:
        """Returns (status, edited_variants, in_camera_jpegs)."""
        edited, in_camera = self.format_detector.detect_with_in_camera_check(raw_file, directory)
        if edited:
            return self._result(raw_file, EditStatus.edited(self.format_detector.method), edited, in_camera)

        for strategy in self.fallback_strategies:
            variants = strategy.detect(raw_file, directory)
            # A same-capture JPEG can look like a naming match; keep the lists disjoint.
            variants = [v for v in variants if v not in in_camera]
            if variants:
                return self._result(raw_file, EditStatus.edited(strategy.method), variants, in_camera)

        if in_camera:
            return self._result(raw_file, EditStatus.in_camera_jpeg(), [], in_camera)

        return self._result(raw_file, EditStatus.unedited(), [], [])

    def _result(self, raw_file: Path, status: EditStatus, edited: List[Path], in_camera: List[Path]) -> DetectionResult:
        logging.debug(f"{raw_file.name}: {status.label} ({len(edited)} variants, {len(in_camera)} in-camera)")
        return status, edited, in_camera
