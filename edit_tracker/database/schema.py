"""
Database schema definitions.
"""
import sqlite3
import logging

from .. import config


def init_schema(conn: sqlite3.Connection):
    """
    Applies the cache schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)
        conn.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (config.CURRENT_SCHEMA_VERSION,))

        # 2. Per-file detection results, keyed on absolute path
        conn.execute("""
        CREATE TABLE IF NOT EXISTS photo_metadata (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            path                TEXT UNIQUE NOT NULL,
            name                TEXT NOT NULL,
            type                TEXT NOT NULL,          -- raw/edited/jpeg
            mtime               REAL NOT NULL,
            edit_status         TEXT NOT NULL,
            detection_method    TEXT,
            jpeg_classification TEXT,
            edited_variants_json TEXT NOT NULL DEFAULT '[]',
            in_camera_jpegs_json TEXT NOT NULL DEFAULT '[]',
            created_at          REAL NOT NULL,
            updated_at          REAL NOT NULL
        );
        """)

        # 3. User answers for JPEG-only folders
        conn.execute("""
        CREATE TABLE IF NOT EXISTS jpeg_classifications (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            folder_path     TEXT UNIQUE NOT NULL,
            classification  TEXT NOT NULL,
            created_at      REAL NOT NULL,
            updated_at      REAL NOT NULL
        );
        """)

        # 4. Folder-level scan summaries
        conn.execute("""
        CREATE TABLE IF NOT EXISTS scan_results (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            folder_path     TEXT UNIQUE NOT NULL,
            name            TEXT NOT NULL,
            scan_date       REAL NOT NULL,
            photo_count     INTEGER NOT NULL,
            edited_count    INTEGER NOT NULL,
            has_children    INTEGER NOT NULL DEFAULT 0,
            parent_path     TEXT,
            is_root         INTEGER NOT NULL DEFAULT 0,
            created_at      REAL NOT NULL,
            updated_at      REAL NOT NULL
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photo_metadata_path ON photo_metadata(path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photo_metadata_mtime ON photo_metadata(mtime);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jpeg_classifications_folder ON jpeg_classifications(folder_path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_scan_results_folder ON scan_results(folder_path);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_scan_results_parent ON scan_results(parent_path);")

    logging.debug("Database schema initialized.")
