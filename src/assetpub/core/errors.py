"""
Unified error handling for assetpub.

This module provides the exception taxonomy used by the publishing core
and standardized exit codes for CLI commands.

Exit Codes:
- 0: Success
- 1: Publishing finished with failed assets
- 2: Publishing was aborted
- 10: Configuration error (bad manifest, bad settings)
- 11: Provider error (AWS / Docker failure)
- 12: Validation error
- 13: Security policy rejection (unexpected bucket owner)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import structlog

if TYPE_CHECKING:
    from assetpub.publishing import FailedAsset

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    FAILURES = 1
    ABORTED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    SECURITY_ERROR = 13
    UNKNOWN_ERROR = 127


class AssetPubError(Exception):
    """Base exception for assetpub errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(AssetPubError):
    """Raised for manifest or settings problems."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(AssetPubError):
    """Raised when AWS or the build backend fails in an unexpected way."""

    exit_code = ExitCode.PROVIDER_ERROR


class ValidationError(AssetPubError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class PublishAbortedError(AssetPubError):
    """Raised at a cancellation checkpoint after abort() was requested."""

    exit_code = ExitCode.ABORTED

    def __init__(self, message: str = "Aborted", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class TaskCancelledError(AssetPubError):
    """Raised for queued limiter tasks that never started before dispose()."""

    exit_code = ExitCode.ABORTED

    def __init__(
        self, message: str = "Task has been cancelled", details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)


class CrossAccountBucketError(AssetPubError):
    """Raised when the asset bucket now lives in a different account than expected."""

    exit_code = ExitCode.SECURITY_ERROR


class ProcessFailedError(ProviderError):
    """Raised when a subprocess exits with a non-zero code or a signal."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None,
        signal: int | None = None,
    ):
        super().__init__(message, {"exit_code": exit_code, "signal": signal})
        self.process_exit_code = exit_code
        self.signal = signal


class PublishFailedError(AssetPubError):
    """Aggregate error raised after a publish pass with failures."""

    exit_code = ExitCode.FAILURES

    def __init__(self, failures: list["FailedAsset"]):
        messages = ", ".join(str(f.error) for f in failures)
        super().__init__(f"Error publishing: {messages}", {"failed_assets": len(failures)})
        self.failures = list(failures)


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - AssetPubError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except AssetPubError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: AssetPubError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
