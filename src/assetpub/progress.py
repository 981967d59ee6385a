"""Progress events emitted while building and publishing assets."""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

if TYPE_CHECKING:
    from assetpub.manifest import ManifestEntry


class EventType(str, Enum):
    """Kinds of progress events."""

    START = "start"
    """Just starting on an asset"""
    SUCCESS = "success"
    """An asset was successfully finished"""
    FAIL = "fail"
    """An asset failed"""
    CHECK = "check"
    """Checking whether an asset has already been published"""
    FOUND = "found"
    """The asset was already published"""
    CACHED = "cached"
    """The asset was reused locally from a cached version"""
    BUILD = "build"
    """The asset will be built"""
    UPLOAD = "upload"
    """The asset will be uploaded"""
    DEBUG = "debug"
    """Another type of detail message"""
    SHELL_OPEN = "shell_open"
    """A subprocess was started"""
    SHELL_DATA = "shell_data"
    """Output from a subprocess"""
    SHELL_CLOSE = "shell_close"
    """A subprocess exited"""


EventEmitter = Callable[[EventType, str], None]

# Entry being processed by the current task. Each pipeline runs in its own
# asyncio task, so concurrent pipelines never see each other's value.
current_asset: ContextVar[Optional["ManifestEntry"]] = ContextVar("current_asset", default=None)


def _no_abort() -> None:
    return None


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot handed to a listener for a single emission."""

    type: EventType
    message: str
    percent_complete: int
    current_asset: Optional["ManifestEntry"] = None
    _abort: Callable[[], None] = field(default=_no_abort, repr=False, compare=False)

    def abort(self) -> None:
        """Request cooperative cancellation of the publishing session."""
        self._abort()


class PublishProgressListener(Protocol):
    """Receives progress events from the publisher."""

    def on_publish_event(self, event_type: EventType, event: ProgressEvent) -> None:
        ...


class ProgressChannel:
    """Routes events to an optional listener and owns the cancellation flag.

    ``emit`` returns the abort flag as it stands after the listener ran, so
    callers can stop immediately when the listener asked for cancellation.
    """

    def __init__(
        self,
        listener: PublishProgressListener | None = None,
        *,
        percent_complete: Callable[[], int] = lambda: 0,
    ) -> None:
        self._listener = listener
        self._percent_complete = percent_complete
        self._aborted = False
        self.message = "Starting"

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True

    def emit(self, event_type: EventType, message: str) -> bool:
        self.message = message
        if self._listener is not None:
            event = ProgressEvent(
                type=event_type,
                message=message,
                percent_complete=self._percent_complete(),
                current_asset=current_asset.get(),
                _abort=self.abort,
            )
            self._listener.on_publish_event(event_type, event)
        return self._aborted
