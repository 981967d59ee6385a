from assetpub.manifest import DestinationIdentifier, FileDestination, FileManifestEntry, FileSource
from assetpub.progress import EventType, ProgressChannel, current_asset
from conftest import RecordingListener


def _entry() -> FileManifestEntry:
    return FileManifestEntry(
        id=DestinationIdentifier("asset", "dest"),
        source=FileSource(path="file.txt"),
        destination=FileDestination(bucket_name="bucket", object_key="key"),
    )


def test_emit_without_listener_returns_abort_flag():
    channel = ProgressChannel()

    assert channel.emit(EventType.START, "Starting work") is False
    assert channel.message == "Starting work"

    channel.abort()
    assert channel.emit(EventType.DEBUG, "still going") is True
    assert channel.aborted


def test_listener_receives_snapshot_with_percent_complete():
    listener = RecordingListener()
    channel = ProgressChannel(listener, percent_complete=lambda: 42)

    channel.emit(EventType.CHECK, "Check s3://bucket/key")

    [event] = listener.events
    assert event.type is EventType.CHECK
    assert event.message == "Check s3://bucket/key"
    assert event.percent_complete == 42
    assert event.current_asset is None


def test_abort_from_listener_is_visible_in_the_same_emit():
    listener = RecordingListener(abort_when=lambda t, e: t is EventType.START)
    channel = ProgressChannel(listener)

    assert channel.emit(EventType.START, "go") is True
    assert channel.aborted


def test_event_carries_current_asset():
    listener = RecordingListener()
    channel = ProgressChannel(listener)
    entry = _entry()

    token = current_asset.set(entry)
    try:
        channel.emit(EventType.BUILD, "building")
    finally:
        current_asset.reset(token)

    assert listener.events[0].current_asset is entry


def test_event_type_values_are_stable():
    assert [e.value for e in EventType] == [
        "start",
        "success",
        "fail",
        "check",
        "found",
        "cached",
        "build",
        "upload",
        "debug",
        "shell_open",
        "shell_data",
        "shell_close",
    ]
