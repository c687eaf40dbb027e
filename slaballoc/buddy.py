"""Buddy page allocator over a simulated block of memory."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from slaballoc.errors import AllocatorError, ErrorCode

BLOCK_SIZE = 4096
BLOCK_SHIFT = BLOCK_SIZE.bit_length() - 1

# Bookkeeping footprint kept at the start of the managed space.
_HEADER_SIZE = 128
_PAGE_DESCRIPTOR_SIZE = 24
_LIST_HEAD_SIZE = 16


@dataclass
class Page:
    """Descriptor of one block: its free order and the owning cache and slab."""

    order: int | None = None
    cache: Any = None
    slab: Any = None

    def reset(self):
        """Mark the page as not heading a free block and clear its owners."""
        self.order = None
        self.cache = None
        self.slab = None


def _reserved_blocks(block_count: int) -> int:
    """Number of leading blocks taken up by the allocator's own bookkeeping."""
    need = 1
    while True:
        usable = block_count - need
        if usable <= 0:
            raise ValueError(f"{block_count} blocks are too few to manage")
        footprint = (
            _HEADER_SIZE
            + _PAGE_DESCRIPTOR_SIZE * usable
            + _LIST_HEAD_SIZE * usable.bit_length()
        )
        if footprint <= BLOCK_SIZE * need:
            return need
        need += 1


class BuddyAllocator:
    """Hands out power-of-two runs of blocks and merges them back on release.

    Addresses are byte offsets into the managed space; the usable area starts
    at ``base``, after the blocks reserved for bookkeeping.
    """

    def __init__(self, block_count):
        self.reserved_blocks = _reserved_blocks(block_count)
        self.block_count = block_count - self.reserved_blocks
        self.base = self.reserved_blocks * BLOCK_SIZE
        self.max_order = self.block_count.bit_length()
        self.pages = [Page() for _ in range(self.block_count)]
        self.memory = bytearray(self.block_count * BLOCK_SIZE)
        self.lock = threading.RLock()
        # Each free list keeps its head at the end.
        self._avail: list[list[int]] = [[] for _ in range(self.max_order)]

        index = 0
        for order in reversed(range(self.max_order)):
            if (self.block_count >> order) & 1:
                self._push(order, index)
                index += 1 << order

    def _address(self, index: int) -> int:
        return self.base + (index << BLOCK_SHIFT)

    def _push(self, order: int, index: int) -> None:
        self._avail[order].append(index)
        self.pages[index].order = order

    def _remove(self, order: int, index: int) -> None:
        self._avail[order].remove(index)
        self.pages[index].order = None

    def get_pages(self, order):
        """Take a block of 2**order pages and return its address."""
        if not 0 <= order < self.max_order:
            raise AllocatorError(
                ErrorCode.INVALID_ORDER,
                "Requested order exceeds maximum block order.",
                "get_pages",
            )
        with self.lock:
            best = next(
                (o for o in range(order, self.max_order) if self._avail[o]), None
            )
            if best is None:
                raise AllocatorError(
                    ErrorCode.BUDDY_SYSTEM_OVERFLOW,
                    "No available blocks of the requested order or higher.",
                    "get_pages",
                )
            index = self._avail[best].pop()
            self.pages[index].order = None
            while best > order:
                best -= 1
                self._push(best, index + (1 << best))
            return self._address(index)

    def free_pages(self, address, order):
        """Return a block of 2**order pages, merging it with free buddies."""
        if address is None or not 0 <= order < self.max_order:
            raise AllocatorError(
                ErrorCode.NULL_POINTER,
                "Invalid order or null pointer provided.",
                "free_pages",
            )
        offset = address - self.base
        if offset % BLOCK_SIZE:
            raise AllocatorError(
                ErrorCode.INVALID_ORDER, "Address is not block aligned", "free_pages"
            )
        index = offset >> BLOCK_SHIFT
        if not 0 <= index < self.block_count:
            raise AllocatorError(
                ErrorCode.BUDDY_SYSTEM_OVERFLOW,
                "Index out of buddy system range",
                "free_pages",
            )
        with self.lock:
            while order < self.max_order - 1:
                buddy = index ^ (1 << order)
                if buddy >= self.block_count or self.pages[buddy].order != order:
                    break
                self._remove(order, buddy)
                order += 1
                index = min(index, buddy)
            self._push(order, index)

    def page_of(self, address):
        """Return the descriptor of the page that holds ``address``."""
        index = (address - self.base) >> BLOCK_SHIFT
        if not 0 <= index < self.block_count:
            raise AllocatorError(
                ErrorCode.BUDDY_SYSTEM_OVERFLOW,
                "Index out of buddy system range",
                "page_of",
            )
        return self.pages[index]

    def free_blocks(self, order):
        """Addresses of the free blocks of the given order, head of list first."""
        if not 0 <= order < self.max_order:
            raise AllocatorError(
                ErrorCode.INVALID_ORDER,
                "Requested order exceeds maximum block order.",
                "free_blocks",
            )
        with self.lock:
            return [self._address(index) for index in reversed(self._avail[order])]