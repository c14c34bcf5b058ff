import argparse
import json
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from edit_tracker.cache import EditCache
from edit_tracker.scanning.scanner import DirectoryScanner


def run_once(src: Path, workers: int, db_dir: Optional[Path]) -> float:
    db_path: Optional[Path] = None
    cache: Optional[EditCache] = None
    try:
        if db_dir:
            db_dir.mkdir(parents=True, exist_ok=True)
            db_path = db_dir / f"bench_{uuid.uuid4().hex}.sqlite"
            cache = EditCache(db_path)
            cache.open()

        scanner = DirectoryScanner(cache=cache, max_workers=workers)
        t0 = time.perf_counter()
        collection = scanner.scan_tree(src, is_root_folder=True)
        elapsed = time.perf_counter() - t0
        if cache is not None:
            cache.put_collection(collection)
        return elapsed
    finally:
        if cache is not None:
            cache.close()
        if db_path is not None:
            for p in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
                try:
                    p.unlink()
                except FileNotFoundError:
                    pass


def benchmark(src: Path, workers: Iterable[int], repeats: int, db_dir: Optional[Path], out_file: Path):
    worker_list = list(workers)
    results = []
    for w in worker_list:
        warm_avg: Optional[float] = None
        times: List[float] = [run_once(src, w, db_dir) for _ in range(repeats)]
        cold = times[0]
        warm_runs = times[1:]
        if warm_runs:
            warm_avg = sum(warm_runs) / len(warm_runs)
            print(f"{w} workers: {cold:.2f}s (cold), avg warm over {len(warm_runs)} runs: {warm_avg:.2f}s")
        else:
            print(f"{w} workers: {cold:.2f}s (single run)")
        results.append(
            {
                "workers": w,
                "times": times,
                "cold": cold,
                "warm_avg": warm_avg,
            }
        )

    out_file.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "timestamp": datetime.now().isoformat(),
        "src": str(src),
        "repeats": repeats,
        "workers": worker_list,
        "results": results,
    }
    out_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote results to {out_file}")


def parse_args():
    p = argparse.ArgumentParser(description="Benchmark scan_tree with different detection worker counts.")
    p.add_argument("src", type=Path, help="Photo library root to scan")
    p.add_argument("--workers", type=int, nargs="+", default=[1, 2, 4, 8], help="Worker counts to test")
    p.add_argument("--repeats", type=int, default=3, help="Runs per worker; first is treated as cold")
    p.add_argument("--db-dir", type=Path, default=None, help="Directory for a per-run cache DB (omit to scan without a cache)")
    p.add_argument("--output", type=Path, default=Path("bench_scan_results.json"), help="Path to write JSON results")
    return p.parse_args()


def main():
    args = parse_args()
    benchmark(args.src, args.workers, args.repeats, args.db_dir, args.output)


if __name__ == "__main__":
    main()
