import argparse
import logging
import sys
import threading
from pathlib import Path

from tqdm import tqdm

from . import config
from .cache import EditCache
from .core import EditTrackerApp
from .exceptions import EditTrackerError, ScanCancelled
from .models import JPEGClassification, ScanProgress
from .reporting import ReportGenerator
from .scanning.scanner import DirectoryScanner
from .thumbnails import ThumbnailRenderer


def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file in the cache directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / config.LOG_FILE_NAME

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Edit Tracker: which RAW photos have been edited?")

    p.add_argument("root", type=Path, nargs="?", help="Photo library folder to scan")

    p.add_argument("--db", type=Path, default=None, help="Custom path for the cache DB (default: ~/.edit_tracker/cache.sqlite)")
    p.add_argument("--no-cache", action="store_true", help="Scan without reading or writing the cache")
    p.add_argument("--workers", type=int, default=config.DETECTION_WORKERS, help="Threads used for detection within a folder")
    p.add_argument("--report-csv", type=Path, default=None, help="Write a per-photo CSV report to this path")
    p.add_argument("--thumbnails", action="store_true", help="Render preview thumbnails into the cache directory")
    p.add_argument("--classify", choices=[c.value for c in JPEGClassification], default=None,
                   help="Classify the JPEGs of a JPEG-only root folder")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    # Cache maintenance
    p.add_argument("--stats", action="store_true", help="Print cache statistics and exit")
    p.add_argument("--clear-cache", action="store_true", help="Delete every cached entry and exit")
    p.add_argument("--invalidate", type=Path, default=None, help="Drop cached entries for a folder and everything under it, then exit")

    args = p.parse_args(argv)
    if args.root is None and not (args.stats or args.clear_cache or args.invalidate):
        p.error("root is required unless --stats, --clear-cache or --invalidate is given")
    return args


class TqdmProgress:
    """Feeds scan progress callbacks into a tqdm bar."""

    def __init__(self):
        self.bar = None

    def __call__(self, progress: ScanProgress):
        if self.bar is None:
            self.bar = tqdm(total=progress.total_folders, desc="Scanning", unit="folder")
        self.bar.set_postfix_str(progress.current_folder[:30])
        self.bar.update(progress.folders_scanned - self.bar.n)

    def close(self):
        if self.bar is not None:
            self.bar.close()


def run_maintenance(args, cache: EditCache) -> bool:
    """Handles the cache-only flags. Returns True if one was run."""
    if args.clear_cache:
        cache.clear_all()
        return True
    if args.invalidate:
        cache.invalidate_subtree(args.invalidate.expanduser().resolve())
        return True
    if args.stats:
        stats = cache.statistics()
        print(f"Photos:          {stats.photo_count}")
        print(f"Folders:         {stats.folder_count}")
        print(f"Classifications: {stats.classification_count}")
        print(f"Database size:   {stats.formatted_size}")
        return True
    return False


def main(argv=None):
    args = parse_args(argv)

    cache = EditCache(args.db) if args.db else EditCache.default()
    cache_dir = cache.db_path.parent
    setup_logging(cache_dir, args.verbose)

    logging.info("=== Edit Tracker Started ===")

    if not args.no_cache:
        cache.open()

    try:
        if run_maintenance(args, cache):
            return 0

        scanner = DirectoryScanner(cache=cache, max_workers=args.workers)
        app = EditTrackerApp(cache, scanner=scanner)
        progress = TqdmProgress()
        cancel = threading.Event()

        try:
            collection = app.scan_library(args.root, progress_callback=progress, cancel_event=cancel)
        except KeyboardInterrupt:
            cancel.set()
            raise
        finally:
            progress.close()

        if args.classify:
            collection = app.classify_jpegs(collection.id, JPEGClassification(args.classify))
        elif collection.needs_jpeg_classification:
            logging.info("Root folder has only JPEGs; re-run with --classify to record what they are.")

        report = ReportGenerator(collection)
        print(report.format_summary())
        p = collection.progress
        print(f"\n{p.edited_photos}/{p.total_photos} edited ({p.percentage:.1f}%)")

        if args.report_csv:
            report.write_csv(args.report_csv)

        if args.thumbnails:
            renderer = ThumbnailRenderer(cache_dir / config.THUMBNAIL_DIR_NAME)
            photos = [photo for node in collection.walk() for photo in node.photos]
            rendered = renderer.render_all(tqdm(photos, desc="Thumbnails"))
            logging.info(f"Rendered {len(rendered)} thumbnails.")
        return 0

    except (KeyboardInterrupt, ScanCancelled):
        logging.warning("Operation cancelled by user.")
        return 130
    except EditTrackerError as e:
        logging.error(str(e))
        return 1
    except Exception:
        logging.exception("Fatal error during scan.")
        return 1
    finally:
        cache.close()


if __name__ == "__main__":
    sys.exit(main())
