"""Exception hierarchy shared by the source resolution engine."""

from __future__ import annotations


class SdkRepoError(Exception):
    """Base exception for sdkrepo operations."""


class PackageParseError(SdkRepoError, ValueError):
    """Raised when a single package element cannot be turned into a Package."""

    def __init__(self, element_name: str, reason: str):
        self.element_name = element_name
        self.reason = reason
        super().__init__(f"<{element_name}>: {reason}")


class CatalogError(SdkRepoError):
    """Raised when the user sources file is malformed."""

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        full_message = f"[entry {index}] {message}" if index is not None else message
        super().__init__(full_message)
