"""
Custom exceptions for moqrelay operations.

This module provides custom exception classes for the failures that can occur
while selecting channels, exchanging control messages and supervising media
pipelines.
"""


class MoqRelayError(Exception):
    """Base exception for all moqrelay errors."""

    pass


class CatalogError(MoqRelayError):
    """Raised when a channel's persisted metadata is missing or unparsable."""

    pass


class EmptyCatalogError(CatalogError):
    """Raised when no channel has at least one resolved media URL."""

    pass


class PlaylistError(MoqRelayError):
    """Raised when a playlist cannot be read, parsed or downloaded."""

    pass


class TransportError(MoqRelayError):
    """Raised when the control channel cannot dial, listen or exchange a message."""

    pass


class ProcessError(MoqRelayError):
    """Base for external process lifecycle failures."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class LaunchError(ProcessError):
    """Raised when an external pipeline process fails to start."""

    pass


class TerminationError(ProcessError):
    """Raised when a tracked process cannot be terminated."""

    def __init__(self, key: str, pid: int | None, message: str):
        super().__init__(key, message)
        self.pid = pid
