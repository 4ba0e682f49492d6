"""
Parallel execution utilities using joblib.
"""

import os
from typing import Callable, Iterator, Optional, Sequence, TypeVar, Union

from joblib import Parallel, delayed
from tqdm import tqdm

from seufit.logging import get_logger

logger = get_logger()

T = TypeVar("T")
R = TypeVar("R")


def get_n_workers(n_jobs: int = -1) -> int:
    """
    Get number of workers to use.

    Args:
        n_jobs: Number of jobs (-1 means all but one CPU)

    Returns:
        Number of workers
    """
    n_cpus = os.cpu_count() or 1

    if n_jobs == -1:
        return max(1, n_cpus - 1)
    elif n_jobs < 0:
        return max(1, n_cpus + 1 + n_jobs)
    elif n_jobs == 0:
        return 1
    else:
        return min(n_jobs, n_cpus)


def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    n_jobs: int = -1,
    backend: str = "loky",
    desc: Optional[str] = None,
    show_progress: bool = True,
    batch_size: Union[int, str] = "auto",
) -> list[R]:
    """
    Parallel map using joblib with progress bar.

    Results are returned in the order of ``items`` regardless of which
    worker finishes first.

    Args:
        func: Function to apply to each item
        items: Sequence of items to process
        n_jobs: Number of parallel jobs (-1 for all but one CPU)
        backend: Joblib backend ('loky', 'threading', 'multiprocessing')
        desc: Description for progress bar
        show_progress: Whether to show progress bar
        batch_size: Batch size for joblib

    Returns:
        List of results
    """
    n_items = len(items)

    if n_items == 0:
        return []

    n_workers = get_n_workers(n_jobs)

    # For very small workloads, don't bother with parallelism
    if n_items <= 2 or n_workers == 1:
        if show_progress and desc:
            return [func(item) for item in tqdm(items, desc=desc, leave=False)]
        return [func(item) for item in items]

    logger.debug(f"Running {n_items} tasks with {n_workers} workers ({backend})")

    if show_progress and desc:
        results = Parallel(n_jobs=n_workers, backend=backend, batch_size=batch_size)(
            delayed(func)(item) for item in tqdm(items, desc=desc, leave=False)
        )
    else:
        results = Parallel(n_jobs=n_workers, backend=backend, batch_size=batch_size)(
            delayed(func)(item) for item in items
        )

    return list(results)


def chunked(items: Sequence[T], chunk_size: int) -> Iterator[list[T]]:
    """
    Split sequence into chunks.

    Args:
        items: Sequence to split
        chunk_size: Size of each chunk

    Yields:
        Chunks of items
    """
    for i in range(0, len(items), chunk_size):
        yield list(items[i : i + chunk_size])
