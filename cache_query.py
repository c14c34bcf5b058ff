#!/usr/bin/env python

import argparse
import sqlite3
from pathlib import Path

from edit_tracker.database.ops import DBOperations


def connect_db(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        raise SystemExit(f"DB not found: {db_path}")
    return sqlite3.connect(db_path)


def list_unedited_raws(ops: DBOperations):
    rows = ops.fetch_unedited_raws()
    if not rows:
        print("Every cached RAW file has an edit.")
        return

    print("Unedited RAW files:")
    print("status          | path")
    print("----------------+----------")
    for path, status in rows:
        print(f"{status.ljust(15)} | {path}")


def list_folders(ops: DBOperations):
    summaries = ops.fetch_folder_summaries()
    if not summaries:
        print("No folder summaries cached.")
        return

    print("photos | edited | root | scanned_at          | folder")
    print("-------+--------+------+---------------------+----------")
    for s in summaries:
        scanned = s.scanned_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{s.photo_count:6d} | {s.edited_count:6d} | {int(s.is_root_folder)}    | {scanned} | {s.folder_path}")


def show_photo(ops: DBOperations, path: Path):
    cached = ops.fetch_photo(path)
    if cached is None:
        print(f"No cached photo for path: {path}")
        return

    photo, mtime = cached
    print("Photo:")
    print(f"  path:     {photo.path}")
    print(f"  kind:     {photo.kind.value}")
    print(f"  status:   {photo.status.label}")
    print(f"  mtime:    {mtime}")
    if photo.edited_variants:
        print("\n  Edited variants:")
        for p in photo.edited_variants:
            print(f"    {p}")
    if photo.in_camera_jpegs:
        print("\n  In-camera JPEGs:")
        for p in photo.in_camera_jpegs:
            print(f"    {p}")


def parse_args():
    p = argparse.ArgumentParser(description="Query helper for the edit tracker cache DB.")
    p.add_argument("--db", required=True, help="Path to cache.sqlite (typically ~/.edit_tracker/cache.sqlite)")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--unedited-raws", action="store_true", help="List cached RAW files with no edit evidence")
    group.add_argument("--folders", action="store_true", help="List cached folder summaries")
    group.add_argument("--photo", help="Show the cached result for one file path")
    return p.parse_args()


def main():
    args = parse_args()
    db_path = Path(args.db).resolve()
    conn = connect_db(db_path)
    ops = DBOperations(conn)

    try:
        if args.unedited_raws:
            list_unedited_raws(ops)
        elif args.folders:
            list_folders(ops)
        elif args.photo:
            show_photo(ops, Path(args.photo).expanduser().resolve())
    finally:
        conn.close()


if __name__ == "__main__":
    main()
