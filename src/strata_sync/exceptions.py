# src/strata_sync/exceptions.py
"""Custom exceptions for the strata-sync application."""


class StrataSyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(StrataSyncError):
    """Raised for configuration-related issues."""

    pass


class ResumeError(ConfigError):
    """Raised when a run cannot resume from its checkpoint."""

    pass


class CheckpointError(StrataSyncError):
    """Raised when the checkpoint file cannot be written."""

    pass


class TransformError(StrataSyncError):
    """Raised when a transform file cannot be loaded or is invalid."""

    pass


class TransferError(StrataSyncError):
    """Raised when a document or collection transfer fails permanently."""

    pass


class DocumentTooLargeError(TransferError):
    """Raised when a document exceeds the destination's size limit."""

    pass


class StoreConnectionError(StrataSyncError):
    """Raised when a document store cannot be reached."""

    pass
