"""Simulated buddy page allocator with slab object caches and a threaded stress run."""

__version__ = "0.1.0"
__all__ = ["errors", "buddy", "slab", "stress"]