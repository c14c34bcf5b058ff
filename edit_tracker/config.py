"""
Configuration constants for the edit tracker.
"""
import os
from pathlib import Path

# --- File Type Definitions ---
RAW_EXTS = {'.nef', '.cr2', '.cr3', '.arw', '.dng', '.orf', '.raf', '.rw2'}
EDITED_EXTS = {'.jpg', '.jpeg', '.tif', '.tiff', '.png', '.heic', '.psd'}
JPEG_EXTS = {'.jpg', '.jpeg'}
SIDECAR_EXT = '.xmp'

# Extension to Type Mapping
EXT_TO_TYPE = {}
for ext in EDITED_EXTS: EXT_TO_TYPE[ext] = 'edited'
for ext in JPEG_EXTS: EXT_TO_TYPE[ext] = 'jpeg'
for ext in RAW_EXTS: EXT_TO_TYPE[ext] = 'raw'

# --- Detection ---
# A converted file written this close to its RAW came out of the camera.
IN_CAMERA_WINDOW_SECONDS = 5.0
VERSION_PATTERNS = [r'-\d+', r'_v\d+', r' \d+']
EDIT_MARKER = 'edit'
DETECTION_WORKERS = 4

# --- Cache ---
# Filesystem timestamp coarseness tolerance.
MTIME_EPSILON_SECONDS = 1.0
CURRENT_SCHEMA_VERSION = 1
CACHE_DB_NAME = "cache.sqlite"
LOG_FILE_NAME = "edit_tracker.log"
DEFAULT_CACHE_DIR = Path(os.environ.get("EDIT_TRACKER_HOME", Path.home() / ".edit_tracker"))

# --- Thumbnails ---
THUMBNAIL_SIZE = (256, 256)
THUMBNAIL_DIR_NAME = "thumbnails"

# --- Scanning ---
# Directories with these suffixes are opaque bundles, never descended into.
PACKAGE_EXTS = {
    '.app', '.bundle', '.framework', '.plugin', '.pkg',
    '.photoslibrary', '.photolibrary', '.aplibrary', '.migratedphotolibrary',
    '.lrdata', '.lrlibrary', '.cocatalog', '.cosessiondb',
    '.fcpbundle', '.imovielibrary', '.tvlibrary', '.musiclibrary',
}
