"""Error codes and the exception raised by the allocators."""

from __future__ import annotations

from enum import IntEnum

MESSAGE_LIMIT = 49
FUNCTION_LIMIT = 63


class ErrorCode(IntEnum):
    """Kinds of failure an allocator can report."""

    NO_ERROR = 0
    INVALID_ORDER = 1
    NULL_POINTER = 2
    MEMORY_ALLOCATION_FAILED = 3
    BUDDY_SYSTEM_OVERFLOW = 4
    UNKNOWN_ERROR = 5


class AllocatorError(Exception):
    """Raised when an allocator operation cannot be carried out.

    The message and function name are clipped to the fixed lengths the
    allocator keeps for its error records.
    """

    def __init__(self, code, message, function):
        self.code = ErrorCode(code)
        self.message = str(message)[:MESSAGE_LIMIT]
        self.function = str(function)[:FUNCTION_LIMIT]
        super().__init__(self.code, self.message, self.function)

    def __str__(self):
        return (
            f"Error occurred in function '{self.function}': "
            f"{self.message} (Error code: {int(self.code)})"
        )