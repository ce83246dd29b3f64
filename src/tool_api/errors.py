"""Error type raised while processing OpenAPI documents and generating handles."""

from __future__ import annotations


class ApiError(Exception):
    """Raised when an OpenAPI document cannot be processed.

    Covers structural problems in the document (non-object root, malformed
    ``$ref``, unknown JSON Schema dialect), configuration problems found while
    generating a handle (no servers) and operations without a usable name.
    """

    def __init__(self, message: str, *, location: str | None = None):
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location is None:
            return self.message
        return f"{self.message} (at {self.location})"
