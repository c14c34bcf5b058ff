import csv
import logging
from pathlib import Path
from typing import List

from .models import Collection

PHOTO_HEADERS = [
    "Folder",
    "File",
    "Kind",
    "Status",
    "Detection Method",
    "JPEG Classification",
    "Edited Variants",
    "In-Camera JPEGs",
]

FOLDER_HEADERS = ["Folder", "Photos", "Edited", "Unedited", "Percent Edited", "Needs Classification"]


class ReportGenerator:
    def __init__(self, collection: Collection):
        self.collection = collection

    def photo_rows(self) -> List[list]:
        rows = []
        for node in self.collection.walk():
            for photo in node.photos:
                status = photo.status
                rows.append([
                    str(node.path),
                    photo.name,
                    photo.kind.value,
                    status.kind.value,
                    status.method.value if status.method else "",
                    status.classification.value if status.classification else "",
                    "; ".join(p.name for p in photo.edited_variants),
                    "; ".join(p.name for p in photo.in_camera_jpegs),
                ])
        return rows

    def folder_summary_rows(self) -> List[list]:
        """One row per folder; counts include subfolders."""
        rows = []
        totals = self.collection.subtree_progress()
        for node in self.collection.walk():
            progress = totals[node.id]
            rows.append([
                str(node.path),
                progress.total_photos,
                progress.edited_photos,
                progress.unedited_photos,
                f"{progress.percentage:.1f}",
                "yes" if node.needs_jpeg_classification else "",
            ])
        return rows

    def write_csv(self, output_csv: Path):
        """Writes one row per photo in the tree."""
        output_csv = Path(output_csv)
        logging.info(f"Writing report for {self.collection.path} -> {output_csv}")
        rows = self.photo_rows()
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(PHOTO_HEADERS)
            writer.writerows(rows)
        logging.info(f"Report complete. {len(rows)} photos.")

    def format_summary(self) -> str:
        lines = [
            f"{'Folder':<50} | {'Photos':>6} | {'Edited':>6} | {'%':>6}",
            f"{'-' * 50}-+-{'-' * 6}-+-{'-' * 6}-+-{'-' * 6}",
        ]
        root = self.collection.path
        for folder, total, edited, _, percent, needs in self.folder_summary_rows():
            rel = Path(folder).relative_to(root)
            label = self.collection.name if str(rel) == "." else str(rel)
            if needs:
                label += " *"
            lines.append(f"{label[:50]:<50} | {total:>6} | {edited:>6} | {percent:>6}")
        return "\n".join(lines)
