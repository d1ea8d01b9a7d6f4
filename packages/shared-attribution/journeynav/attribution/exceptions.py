"""Custom exceptions for the attribution engine."""

from __future__ import annotations


class AttributionError(Exception):
    """Base exception for attribution errors."""

    pass


class ConfigurationError(AttributionError):
    """Raised when attribution or storage configuration is invalid."""

    pass


class StorageError(AttributionError):
    """Raised when a repository read or write fails."""

    pass
