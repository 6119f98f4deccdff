"""Thread pool that meshes tiles from a shared FIFO queue."""

import logging
import os
import pathlib
import threading
import time
from collections import deque
from typing import Callable, Iterable, List, Optional, Tuple

from .buffer import Buffer
from .elevation import build_terrain_mesh
from .models import Tile, TileNeighbors

logger = logging.getLogger(__name__)

TileJob = Tuple[int, Tile, TileNeighbors]
Mesher = Callable[[Tile, TileNeighbors], Buffer]


class TileJobError(RuntimeError):
    """One or more tile jobs failed; other tiles were still written."""

    def __init__(self, failures: List[Tuple[int, BaseException]]):
        self.failures = failures
        summary = ", ".join(f"tile {index}: {exc!r}" for index, exc in failures)
        super().__init__(f"{len(failures)} tile job(s) failed: {summary}")


def tile_filename(index: int) -> str:
    return f"tile{index}.bin.gz"


class _TileWorker(threading.Thread):
    """Pop jobs until the queue is empty; a failing job stops only this worker."""

    def __init__(self, queue: deque, lock: threading.Lock, output_dir: pathlib.Path,
                 mesher: Mesher, name: str):
        super().__init__(name=name, daemon=True)
        self.queue = queue
        self.lock = lock
        self.output_dir = output_dir
        self.mesher = mesher
        self.completed: List[int] = []
        self.failure: Optional[Tuple[int, BaseException]] = None

    def run(self):
        while True:
            with self.lock:
                if not self.queue:
                    return
                index, tile, neighbors = self.queue.popleft()

            try:
                buffer = self.mesher(tile, neighbors)
                buffer.save(self.output_dir / tile_filename(index))
            except Exception as exc:
                logger.exception(f"Elevation mesh {index} failed")
                self.failure = (index, exc)
                return
            self.completed.append(index)
            logger.info(f"> elevation mesh {index}")


def run_tile_jobs(jobs: Iterable[TileJob], output_dir,
                  workers: Optional[int] = None,
                  mesher: Mesher = build_terrain_mesh) -> List[int]:
    """Mesh every job and write ``tile<index>.bin.gz`` files into *output_dir*.

    Returns the indices written, sorted. Raises :class:`TileJobError` after
    all workers have joined if any job failed.
    """
    output_dir = pathlib.Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    queue = deque(jobs)
    lock = threading.Lock()
    thread_count = workers or os.cpu_count() or 1
    thread_count = max(1, min(thread_count, len(queue))) if queue else 1

    logger.info(f"Meshing {len(queue)} tiles on {thread_count} worker(s)")
    t0 = time.perf_counter()

    threads = [_TileWorker(queue, lock, output_dir, mesher, name=f"tile-worker-{i}")
               for i in range(thread_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    completed = sorted(i for t in threads for i in t.completed)
    failures = [t.failure for t in threads if t.failure is not None]
    logger.info(f"Meshed {len(completed)} tiles in {time.perf_counter() - t0:.1f}s")
    if failures:
        raise TileJobError(sorted(failures, key=lambda f: f[0]))
    return completed
