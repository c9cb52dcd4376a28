"""
Error types raised by the memory store.

Validation and not-found conditions are recoverable and rendered by the
tool adapter as plain replies. Storage failures propagate.
"""


class OmniMemoryError(Exception):
    """Base class for all memory store errors."""


class ValidationError(OmniMemoryError, ValueError):
    """Malformed or missing input, rejected before any mutation."""


class NotFoundError(OmniMemoryError):
    """The requested memory id does not exist."""

    def __init__(self, memory_id: str):
        super().__init__(f"Memory not found: {memory_id}")
        self.memory_id = memory_id


class SearchSyntaxError(OmniMemoryError):
    """An advanced-syntax query could not be parsed by the search index."""

    def __init__(self, query: str, message: str):
        super().__init__(f"Invalid FTS5 advanced syntax: {message}")
        self.query = query
        self.message = message


class StorageIOError(OmniMemoryError):
    """Directory creation or database engine failure."""
