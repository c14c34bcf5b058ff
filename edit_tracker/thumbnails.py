import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from . import config
from .exceptions import ThumbnailError
from .models import FileKind, Photo

# Formats Pillow decodes without extra plugins. RAW files are never decoded.
PREVIEW_EXTS = {'.jpg', '.jpeg', '.png', '.tif', '.tiff', '.psd'}


class ThumbnailRenderer:
    """
    Writes small JPEG previews for the presentation layer.

    A RAW photo is previewed through its first decodable edited variant, or
    failing that its in-camera JPEG; a standalone JPEG previews itself.
    """

    def __init__(self, output_dir: Path, size: Tuple[int, int] = config.THUMBNAIL_SIZE):
        self.output_dir = Path(output_dir)
        self.size = size

    def preview_sources(self, photo: Photo) -> List[Path]:
        if photo.kind is FileKind.RAW:
            candidates = list(photo.edited_variants) + list(photo.in_camera_jpegs)
        else:
            candidates = [photo.path]
        return [p for p in candidates if p.suffix.lower() in PREVIEW_EXTS]

    def thumbnail_path(self, photo: Photo) -> Path:
        return self.output_dir / f"{photo.id}.jpg"

    def render(self, photo: Photo) -> Optional[Path]:
        """
        Returns the thumbnail path, or None when the photo has nothing decodable.
        Raises ThumbnailError if the thumbnail cannot be written.
        """
        dest = self.thumbnail_path(photo)
        for source in self.preview_sources(photo):
            if self._is_fresh(dest, source):
                return dest
            try:
                with Image.open(source) as im:
                    im.thumbnail(self.size)
                    preview = im.convert("RGB")
            except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
                logging.debug(f"Cannot decode {source}: {e}")
                continue

            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                preview.save(dest, "JPEG", quality=85)
            except OSError as e:
                raise ThumbnailError(f"Failed to write thumbnail for {photo.path}: {e}") from e
            return dest
        return None

    def render_all(self, photos: Iterable[Photo]) -> Dict[Path, Path]:
        """Renders many photos, logging failures. Maps photo path to thumbnail path."""
        rendered = {}
        for photo in photos:
            try:
                thumb = self.render(photo)
            except ThumbnailError as e:
                logging.error(str(e))
                continue
            if thumb is not None:
                rendered[photo.path] = thumb
        return rendered

    def _is_fresh(self, dest: Path, source: Path) -> bool:
        try:
            return dest.stat().st_mtime >= source.stat().st_mtime
        except OSError:
            return False
