"""Multi-threaded exercise of the slab allocator with a shared cache."""

from __future__ import annotations

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Optional

from slaballoc.errors import AllocatorError, ErrorCode
from slaballoc.slab import Cache, SlabAllocator

MASK = 0xA5
BLOCK_NUMBER = 1000
THREAD_NUM = 5
ITERATIONS = 1000
SHARED_SIZE = 7
SHARED_EVERY = 100
# Bytes one bookkeeping record (cache, object) takes in the worker's table.
_RECORD_SIZE = 16


@dataclass
class WorkerData:
    """What one worker thread is handed: its id, the shared cache and its workload."""

    id: int = 0
    shared: Optional[Cache] = None
    iterations: int = ITERATIONS


def construct(view):
    """Object constructor for the shared cache: fill the object with MASK."""
    view[:] = bytes([MASK]) * len(view)


def check(data, size):
    """Whether the first ``size`` bytes of ``data`` all hold MASK."""
    chunk = bytes(data[:size])
    return len(chunk) == size and chunk.count(MASK) == size


def _release(allocator, cache, table, objects):
    for owner, address in objects:
        owner.free(address)
    allocator.kfree(table)
    allocator.destroy_cache(cache)


def work(allocator, data):
    """Fill a private cache and draw from the shared one, then verify and free.

    Every hundredth object comes from the shared cache and must arrive
    constructed; the rest come from a cache of ``data.id``-byte objects
    owned by this worker. Returns the number of objects whose contents were
    found damaged when they were released.
    """
    cache = allocator.create_cache(f"thread cache {data.id}", data.id)
    table = None
    objects: list[tuple[Cache, int]] = []
    try:
        table = allocator.kmalloc(_RECORD_SIZE * data.iterations)
        for i in range(data.iterations):
            if i % SHARED_EVERY == 0:
                shared = data.shared
                if shared is None:
                    raise AllocatorError(
                        ErrorCode.NULL_POINTER, "Error: Shared cache is null", "work"
                    )
                address = shared.alloc()
                objects.append((shared, address))
                if not check(allocator.read(address, shared.objsize), shared.objsize):
                    raise AllocatorError(
                        ErrorCode.MEMORY_ALLOCATION_FAILED,
                        "Error: Data check failed for shared cache",
                        "work",
                    )
            else:
                address = cache.alloc()
                objects.append((cache, address))
                allocator.write(address, bytes([MASK]) * data.id)
    except AllocatorError:
        _release(allocator, cache, table, objects)
        raise

    print(cache.info())
    if data.shared is not None:
        print(data.shared.info())

    damaged = 0
    for owner, address in objects:
        size = data.id if owner is cache else owner.objsize
        if not check(allocator.read(address, size), size):
            damaged += 1
        owner.free(address)
    allocator.kfree(table)
    allocator.destroy_cache(cache)
    return damaged


def run_threads(allocator, worker, data, count):
    """Run ``worker`` in ``count`` threads, each with its own copy of ``data``.

    Thread ``i`` receives an id of ``i + 1``. Returns the workers' results in
    thread order; the first exception raised by a worker is raised again.
    """
    if count <= 0:
        return []
    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [
            pool.submit(worker, allocator, replace(data, id=i + 1))
            for i in range(count)
        ]
    return [future.result() for future in futures]


def run_test_case(thread_num, iterations, shared_size):
    """Run the threaded workload on a fresh allocator; return each worker's result."""
    allocator = SlabAllocator(BLOCK_NUMBER)
    shared = allocator.create_cache("shared object", shared_size, construct)
    data = WorkerData(shared=shared, iterations=iterations)
    results = run_threads(allocator, work, data, thread_num)
    allocator.destroy_cache(shared)
    return results


def main(argv=None):
    """Command-line entry point; returns the process exit status."""
    parser = argparse.ArgumentParser(
        prog="slaballoc-stress",
        description="Exercise the slab allocator from several threads.",
    )
    parser.add_argument("--threads", type=int, default=THREAD_NUM)
    parser.add_argument("--iterations", type=int, default=ITERATIONS)
    parser.add_argument("--shared-size", type=int, default=SHARED_SIZE)
    args = parser.parse_args(argv)

    try:
        results = run_test_case(args.threads, args.iterations, args.shared_size)
    except AllocatorError as exc:
        print(exc, file=sys.stderr)
        return 1

    damaged = sum(results)
    print(f"{len(results)} workers finished, {damaged} damaged objects")
    return 0 if damaged == 0 else 1


if __name__ == "__main__":
    sys.exit(main())