"""
Parallel processing utilities for Spatial Engine.
"""
import os
import time
import logging
import concurrent.futures
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from ..core.config import get_config
from ..core.exceptions import ComputationTimeoutError

logger = logging.getLogger(__name__)


def resolve_workers(max_workers: Optional[int], n_items: int) -> int:
    """Determine the number of workers for a batch."""
    if max_workers is None:
        cpu_count = os.cpu_count() or 4
        max_workers = max(1, cpu_count - 1)
    return max(1, min(max_workers, n_items))


def chunk_bounds(total: int, chunk_size: int) -> List[int]:
    """Split ``total`` items into a fixed list of chunk lengths."""
    if total <= 0:
        return []
    full, remainder = divmod(total, chunk_size)
    sizes = [chunk_size] * full
    if remainder:
        sizes.append(remainder)
    return sizes


def spawn_generators(seed: Optional[int], count: int) -> List[np.random.Generator]:
    """Independent generators, one per chunk, derived from a single seed."""
    children = np.random.SeedSequence(seed).spawn(count)
    return [np.random.default_rng(child) for child in children]


def parallel_map(
    func: Callable[[Any], Any],
    items: Sequence[Any],
    max_workers: Optional[int] = None,
    executor: Optional[str] = None,
    timeout: Optional[float] = None
) -> List[Any]:
    """
    Apply ``func`` to every item on a worker pool.

    Results come back in input order whatever the completion order. The
    timeout covers the whole call; on expiry pending work is cancelled and
    ComputationTimeoutError is raised. Exceptions raised by ``func``
    propagate to the caller.

    Args:
        func: Callable applied to each item (module level for process pools)
        items: Work items
        max_workers: Pool size; defaults to ``parallel.max_workers``
        executor: 'thread', 'process' or 'serial'; defaults to ``parallel.executor``
        timeout: Seconds allowed for the whole batch; defaults to ``parallel.timeout``

    Returns:
        List of results aligned with ``items``
    """
    items = list(items)
    if not items:
        return []

    settings = get_config().section('parallel')
    max_workers = max_workers if max_workers is not None else settings.max_workers
    executor = executor or settings.executor
    timeout = timeout if timeout is not None else settings.timeout

    workers = resolve_workers(max_workers, len(items))
    start_time = time.time()

    if executor == 'serial' or workers == 1:
        results = []
        for item in items:
            if timeout is not None and time.time() - start_time > timeout:
                raise ComputationTimeoutError(
                    f"Serial batch exceeded {timeout:.1f}s after {len(results)}/{len(items)} items"
                )
            results.append(func(item))
        return results

    if executor == 'thread':
        pool = ThreadPoolExecutor(max_workers=workers)
    elif executor == 'process':
        pool = ProcessPoolExecutor(max_workers=workers)
    else:
        raise ValueError(f"Unknown executor: {executor}")

    logger.debug(f"Dispatching {len(items)} items to {workers} {executor} workers")
    futures = [pool.submit(func, item) for item in items]
    results = []
    try:
        for future in futures:
            remaining = None
            if timeout is not None:
                remaining = max(0.0, timeout - (time.time() - start_time))
            results.append(future.result(timeout=remaining))
    except concurrent.futures.TimeoutError as e:
        for future in futures:
            future.cancel()
        pool.shutdown(wait=False, cancel_futures=True)
        logger.warning(f"Parallel batch timed out after {timeout:.1f}s with {len(results)}/{len(items)} done")
        raise ComputationTimeoutError(
            f"Parallel batch exceeded {timeout:.1f}s ({len(results)}/{len(items)} items finished)"
        ) from e
    except BaseException:
        pool.shutdown(wait=False, cancel_futures=True)
        raise

    pool.shutdown(wait=True)
    logger.debug(f"Parallel batch of {len(items)} items finished in {time.time() - start_time:.3f}s")
    return results
