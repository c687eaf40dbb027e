# slaballoc

A simulated kernel-style memory allocator. A fixed number of 4096-byte
blocks is managed by a buddy allocator, and caches of fixed-size objects,
built from slabs, sit on top of it. Addresses are plain integers into a
simulated byte space held in a `bytearray`, so you can allocate, write,
read back and free objects and watch how slabs and blocks are used.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Usage

```python
from slaballoc.slab import SlabAllocator
from slaballoc.errors import AllocatorError

allocator = SlabAllocator(1000)          # 1000 blocks of 4096 bytes

cache = allocator.create_cache("points", 16)
address = cache.alloc()
allocator.write(address, b"\x01" * 16)
assert allocator.read(address, 16) == b"\x01" * 16
print(cache.info())                      # name, sizes, slab count, fill ratio
cache.free(address)
allocator.destroy_cache(cache)           # True once the cache holds no objects

buffer = allocator.kmalloc(100)          # served from the 128-byte size cache
allocator.kfree(buffer)

try:
    allocator.create_cache("empty", 0)
except AllocatorError as error:
    print(error.code, error)
```

`create_cache(name, size, ctor=None, dtor=None)` takes an optional
constructor and destructor. Each is called with a writable `memoryview`
of one object: the constructor for every slot when a new slab is set up,
the destructor when an object is freed.

Other parts of the `Cache` interface:

- `shrink()` gives the blocks of empty slabs back to the buddy allocator
  and returns how many blocks were released. If the cache has allocated
  since the last call, it only clears that mark and returns 0.
- `has_error()` tells whether any operation on the cache has failed; the
  last failure is kept in `error`.

`kmalloc(size)` draws from thirteen size caches, `Size32` up to
`Size131072`; larger requests raise `AllocatorError`. All failures are
reported by raising `slaballoc.errors.AllocatorError`, whose `code` is an
`ErrorCode` member and whose `message` and `function` say what failed and
where.

The page level is available on its own through
`slaballoc.buddy.BuddyAllocator`, with `get_pages(order)`,
`free_pages(address, order)`, `page_of(address)` and `free_blocks(order)`.
A few leading blocks are kept back for bookkeeping, so the usable area
starts at `base` and holds `block_count` blocks.

## Stress run

The package ships a multithreaded exercise in which several workers each
fill their own cache while drawing every hundredth object from a shared
one, checking every object's contents before freeing it:

```
slaballoc-stress
slaballoc-stress --threads 3 --iterations 500 --shared-size 10
```

It exits with status 0 when no damaged object was found and 1 otherwise,
or when an allocation fails. The same run is available from Python as
`slaballoc.stress.run_test_case(thread_num, iterations, shared_size)`,
which returns the number of damaged objects each worker found.

## What it does not do

Nothing here hands out real process memory: every address refers to the
simulated byte space of one `SlabAllocator` or `BuddyAllocator`, and data
only gets there through `write` and the constructor and destructor hooks.