"""Core modules for assetpub - centralized error definitions."""

from assetpub.core.errors import (
    AssetPubError,
    ConfigurationError,
    CrossAccountBucketError,
    ExitCode,
    ProcessFailedError,
    ProviderError,
    PublishAbortedError,
    PublishFailedError,
    TaskCancelledError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "AssetPubError",
    "ConfigurationError",
    "ProviderError",
    "ValidationError",
    "PublishAbortedError",
    "TaskCancelledError",
    "CrossAccountBucketError",
    "ProcessFailedError",
    "PublishFailedError",
    "main_with_error_handling",
    "format_error_message",
]
