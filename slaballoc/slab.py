"""Slab object caches built on top of the buddy page allocator."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from slaballoc.buddy import BLOCK_SIZE, BuddyAllocator
from slaballoc.errors import AllocatorError, ErrorCode

CACHE_L1_LINE_SIZE = 64
SLAB_DESCRIPTOR_SIZE = 48
FREE_SLOT_SIZE = 4
CACHE_DESCRIPTOR_SIZE = 360
SIZE_CACHE_COUNT = 13
MIN_SIZE_CLASS = 32
NAME_LIMIT = 63
MAX_OFF_SLAB_OBJECTS = 8

Hook = Callable[[memoryview], None]


class Slab:
    """One run of pages cut into equally sized object slots."""

    def __init__(self, cache, base, descriptor_size):
        self.cache = cache
        self.base = base
        self.descriptor = None
        self.obj_count = 0
        self.in_use: set[int] = set()
        self.colour_offset = CACHE_L1_LINE_SIZE * cache.colour_next
        cache.colour_next = (cache.colour_next + 1) % cache.colour
        self.next_free: list[Optional[int]] = [*range(1, cache.num), None]
        self.free: Optional[int] = 0 if cache.num else None
        self.s_mem = base + descriptor_size + self.colour_offset
        if cache.ctor is not None:
            for slot in range(cache.num):
                cache.ctor(cache._view(self.object_address(slot)))

    def object_address(self, slot: int) -> int:
        """Address of the object in the given slot."""
        return self.s_mem + slot * self.cache.objsize


class Cache:
    """A cache of fixed-size objects kept in slabs."""

    def __init__(self, owner, name, size, ctor=None, dtor=None):
        self._owner = owner
        self.name = name
        self.objsize = size
        self.ctor: Optional[Hook] = ctor
        self.dtor: Optional[Hook] = dtor
        self.address: Optional[int] = None
        self.slab_count = 0
        self.obj_count = 0
        self.colour_next = 0
        self.growing = False
        self.error: Optional[AllocatorError] = None
        self.lock = threading.RLock()
        # Each slab list keeps its head at the end.
        self.slabs_full: list[Slab] = []
        self.slabs_partial: list[Slab] = []
        self.slabs_free: list[Slab] = []

        order = 0
        while (BLOCK_SIZE << order) < size:
            order += 1
        self.slab_order = order
        if self.on_slab:
            room = BLOCK_SIZE - SLAB_DESCRIPTOR_SIZE
            self.num = room // (size + FREE_SLOT_SIZE)
            self.colour = (room % (size + FREE_SLOT_SIZE)) // 64 + 1
        else:
            span = BLOCK_SIZE << order
            self.num = span // size
            self.colour = (span % size) // 64 + 1

    @property
    def on_slab(self) -> bool:
        """Whether slab descriptors live inside the slab pages."""
        return self.objsize < BLOCK_SIZE // 8

    def _view(self, address: int) -> memoryview:
        return self._owner._view(address, self.objsize)

    def _fail(self, code, message, function, cause=None):
        err = AllocatorError(code, message, function)
        self.error = err
        raise err from cause

    def _grow(self) -> Slab:
        owner = self._owner
        buddy = owner.buddy
        try:
            address = buddy.get_pages(self.slab_order)
        except AllocatorError as exc:
            self._fail(
                ErrorCode.MEMORY_ALLOCATION_FAILED,
                "Failed to allocate pages from buddy",
                "alloc",
                exc,
            )
        descriptor_size = SLAB_DESCRIPTOR_SIZE + self.num * FREE_SLOT_SIZE
        if self.on_slab:
            slab = Slab(self, address, descriptor_size)
        else:
            if self.num > MAX_OFF_SLAB_OBJECTS:
                buddy.free_pages(address, self.slab_order)
                self._fail(ErrorCode.UNKNOWN_ERROR, "FATAL ERROR", "alloc")
            try:
                descriptor = owner.kmalloc(descriptor_size)
            except AllocatorError as exc:
                buddy.free_pages(address, self.slab_order)
                self._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED,
                    "Failed to allocate memory for slab",
                    "alloc",
                    exc,
                )
            slab = Slab(self, address, 0)
            slab.descriptor = descriptor
        for block in range(1 << self.slab_order):
            page = buddy.page_of(address + block * BLOCK_SIZE)
            page.cache = self
            page.slab = slab
        self.slab_count += 1
        return slab

    def alloc(self):
        """Take one object from the cache, growing it when no slot is free."""
        with self.lock:
            if self.slabs_partial:
                slab = self.slabs_partial.pop()
            elif self.slabs_free:
                slab = self.slabs_free.pop()
            else:
                slab = self._grow()

            slot = slab.free
            slab.free = slab.next_free[slot]
            slab.in_use.add(slot)
            slab.obj_count += 1
            self.obj_count += 1

            if slab.obj_count < self.num and slab.free is not None:
                self.slabs_partial.append(slab)
            else:
                self.slabs_full.append(slab)
            self.growing = True
            return slab.object_address(slot)

    def free(self, address):
        """Give an object back to the cache."""
        if address is None:
            self._fail(ErrorCode.NULL_POINTER, "Object pointer is null", "free")
        with self.lock:
            try:
                page = self._owner.buddy.page_of(address)
            except AllocatorError as exc:
                self._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED,
                    "Invalid slab pointer",
                    "free",
                    exc,
                )
            slab = page.slab
            if slab is None or slab.cache is not self:
                self._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED, "Invalid slab pointer", "free"
                )
            slot, rest = divmod(address - slab.s_mem, self.objsize)
            if rest or not 0 <= slot < self.num or slot not in slab.in_use:
                self._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED, "Invalid object pointer", "free"
                )

            if self.dtor is not None:
                self.dtor(self._view(address))

            for slabs in (self.slabs_full, self.slabs_partial):
                if slab in slabs:
                    slabs.remove(slab)
                    break

            slab.next_free[slot] = slab.free
            slab.free = slot
            slab.in_use.discard(slot)
            slab.obj_count -= 1
            self.obj_count -= 1

            if slab.obj_count > 0:
                self.slabs_partial.append(slab)
            else:
                self.slabs_free.append(slab)

    def shrink(self):
        """Release every empty slab; return the number of blocks freed.

        A cache that grew since the last call only has its growing mark
        cleared and releases nothing.
        """
        with self.lock:
            if self.growing:
                self.growing = False
                return 0
            buddy = self._owner.buddy
            released = 0
            while self.slabs_free:
                slab = self.slabs_free.pop()
                for block in range(1 << self.slab_order):
                    buddy.page_of(slab.base + block * BLOCK_SIZE).reset()
                buddy.free_pages(slab.base, self.slab_order)
                if slab.descriptor is not None:
                    self._owner.kfree(slab.descriptor)
                released += 1 << self.slab_order
                self.slab_count -= 1
            return released

    def info(self):
        """One-line summary of the cache's size and fill level."""
        with self.lock:
            capacity = self.num * self.slab_count
            percent = 100.0 * self.obj_count / capacity if capacity else 0.0
            return (
                f"Name: '{self.name}'\tObjSize: {self.objsize} B\t"
                f"CacheSize: {self.slab_count << self.slab_order} Blocks\t"
                f"SlabCnt: {self.slab_count}\tObjInSlab: {self.num}\t"
                f"Filled:{percent:f}%"
            )

    def has_error(self):
        """Whether any operation on this cache has failed."""
        with self.lock:
            return self.error is not None


class SlabAllocator:
    """Object caches and general-purpose small buffers over a buddy allocator."""

    def __init__(self, block_count):
        self.buddy = BuddyAllocator(block_count)
        self.meta_cache = Cache(self, "cache_cache", CACHE_DESCRIPTOR_SIZE)
        self._caches: list[Cache] = []
        self.size_caches = [
            self.create_cache(f"Size{MIN_SIZE_CLASS << i}", MIN_SIZE_CLASS << i)
            for i in range(SIZE_CACHE_COUNT)
        ]

    @property
    def caches(self) -> list[Cache]:
        """Live caches, most recently created first."""
        with self.meta_cache.lock:
            return list(reversed(self._caches))

    def _view(self, address: int, size: int) -> memoryview:
        offset = address - self.buddy.base
        if offset < 0 or size < 0 or offset + size > len(self.buddy.memory):
            raise AllocatorError(
                ErrorCode.BUDDY_SYSTEM_OVERFLOW, "Address out of range", "access"
            )
        return memoryview(self.buddy.memory)[offset : offset + size]

    def create_cache(self, name, size, ctor=None, dtor=None):
        """Create a cache of objects of ``size`` bytes."""
        meta = self.meta_cache
        with meta.lock:
            if size <= 0:
                meta._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED,
                    "Failed to allocate memory for cache",
                    "create_cache",
                )
            try:
                address = meta.alloc()
            except AllocatorError as exc:
                meta._fail(
                    ErrorCode.MEMORY_ALLOCATION_FAILED,
                    "Failed to allocate memory for cache",
                    "create_cache",
                    exc,
                )
            if len(name) >= NAME_LIMIT:
                meta.free(address)
                meta._fail(ErrorCode.INVALID_ORDER, "Cache name too long", "create_cache")
            cache = Cache(self, name, size, ctor, dtor)
            cache.address = address
            self._caches.append(cache)
            return cache

    def destroy_cache(self, cache):
        """Destroy an empty cache; return whether it was destroyed."""
        meta = self.meta_cache
        if cache is None:
            meta._fail(ErrorCode.NULL_POINTER, "Cache pointer is null", "destroy_cache")
        with cache.lock:
            if cache.slabs_full or cache.slabs_partial:
                return False
            cache.growing = False
            cache.shrink()
            with meta.lock:
                self._caches.remove(cache)
                meta.free(cache.address)
            return True

    def kmalloc(self, size):
        """Allocate a buffer of at least ``size`` bytes from the size caches."""
        for cache in self.size_caches:
            if size <= cache.objsize:
                return cache.alloc()
        raise AllocatorError(
            ErrorCode.MEMORY_ALLOCATION_FAILED, "Requested size too large", "kmalloc"
        )

    def kfree(self, address):
        """Release a buffer obtained from :meth:`kmalloc`."""
        if address is None:
            return
        cache = self.buddy.page_of(address).cache
        if cache is None:
            return
        cache.free(address)

    def read(self, address, size):
        """Return ``size`` bytes of managed memory starting at ``address``."""
        return bytes(self._view(address, size))

    def write(self, address, data):
        """Copy ``data`` into managed memory at ``address``."""
        data = bytes(data)
        self._view(address, len(data))[:] = data