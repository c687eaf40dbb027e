import threading

import pytest

from slaballoc.errors import AllocatorError, ErrorCode
from slaballoc.slab import SlabAllocator
from slaballoc.stress import (
    MASK,
    WorkerData,
    check,
    construct,
    main,
    run_test_case,
    run_threads,
    work,
)


@pytest.fixture
def allocator():
    return SlabAllocator(200)


def test_check_accepts_mask_bytes():
    assert check(bytes([MASK]) * 7, 7) is True


def test_check_rejects_other_bytes_and_short_data():
    assert check(bytes([MASK, MASK, 0]), 3) is False
    assert check(bytes([MASK, MASK, 0]), 2) is True
    assert check(bytes([MASK]), 4) is False


def test_construct_fills_object():
    buf = bytearray(5)
    construct(memoryview(buf))
    assert check(buf, 5)
    assert buf == bytearray(b"\xa5" * 5)


def test_work_without_shared_cache_raises(allocator):
    names_before = [c.name for c in allocator.caches]
    with pytest.raises(AllocatorError) as info:
        work(allocator, WorkerData(id=2, shared=None, iterations=10))
    assert info.value.code == ErrorCode.NULL_POINTER
    assert [c.name for c in allocator.caches] == names_before


def test_work_detects_unconstructed_shared_objects(allocator):
    shared = allocator.create_cache("plain shared", 7)
    with pytest.raises(AllocatorError) as info:
        work(allocator, WorkerData(id=2, shared=shared, iterations=10))
    assert info.value.code == ErrorCode.MEMORY_ALLOCATION_FAILED
    assert shared.obj_count == 0


def test_work_with_zero_id_fails_cache_creation(allocator):
    shared = allocator.create_cache("shared object", 7, construct)
    with pytest.raises(AllocatorError) as info:
        work(allocator, WorkerData(id=0, shared=shared, iterations=10))
    assert info.value.code == ErrorCode.MEMORY_ALLOCATION_FAILED


def test_run_threads_assigns_ids_and_keeps_data(allocator):
    seen = []
    lock = threading.Lock()
    marker = object()

    def worker(alloc, data):
        with lock:
            seen.append((alloc, data.shared, data.iterations))
        return data.id

    original = WorkerData(id=0, shared=marker, iterations=42)
    results = run_threads(allocator, worker, original, 3)
    assert results == [1, 2, 3]
    assert original.id == 0
    assert all(entry == (allocator, marker, 42) for entry in seen)
    assert len(seen) == 3


def test_run_threads_with_no_threads(allocator):
    assert run_threads(allocator, lambda a, d: d.id, WorkerData(), 0) == []


def test_run_threads_propagates_errors(allocator):
    def worker(alloc, data):
        raise AllocatorError(ErrorCode.UNKNOWN_ERROR, "boom", "worker")

    with pytest.raises(AllocatorError) as info:
        run_threads(allocator, worker, WorkerData(), 2)
    assert info.value.code == ErrorCode.UNKNOWN_ERROR


def test_run_threads_with_real_workers(allocator):
    shared = allocator.create_cache("shared object", 7, construct)
    results = run_threads(
        allocator, work, WorkerData(shared=shared, iterations=150), 3
    )
    assert results == [0, 0, 0]
    assert shared.obj_count == 0
    assert allocator.destroy_cache(shared) is True


def test_run_test_case_reports_each_worker():
    results = run_test_case(2, 150, 10)
    assert results == [0, 0]


def test_main_succeeds(capsys):
    status = main(["--threads", "2", "--iterations", "120", "--shared-size", "10"])
    out = capsys.readouterr().out
    assert status == 0
    assert "Name: 'thread cache 1'" in out
    assert "Name: 'shared object'" in out


def test_main_reports_failure_for_oversized_table(capsys):
    status = main(["--threads", "1", "--iterations", "10000"])
    err = capsys.readouterr().err
    assert status == 1
    assert "Requested size too large" in err