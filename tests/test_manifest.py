import pytest

from assetpub.core.errors import ConfigurationError, ValidationError
from assetpub.manifest import (
    AssetManifest,
    DestinationIdentifier,
    DestinationPattern,
    DockerImageManifestEntry,
    FileAssetPackaging,
    FileManifestEntry,
)

DOCUMENT = {
    "version": "36.0.0",
    "files": {
        "abc123": {
            "source": {"path": "asset.abc123", "packaging": "zip"},
            "destinations": {
                "current": {
                    "bucketName": "assets-${AWS::AccountId}",
                    "objectKey": "abc123.zip",
                    "assumeRoleArn": "arn:aws:iam::123456789012:role/publish",
                },
                "replica": {
                    "bucketName": "replica-bucket",
                    "objectKey": "abc123.zip",
                    "region": "eu-west-1",
                },
            },
        }
    },
    "dockerImages": {
        "img1": {
            "source": {
                "directory": "asset.img1",
                "dockerBuildArgs": {"A": "1"},
                "cacheFrom": [{"type": "registry", "params": {"ref": "repo:cache"}}],
            },
            "destinations": {
                "current": {"repositoryName": "repo", "imageTag": "img1"},
            },
        }
    },
}


def test_from_path_loads_assets_json_from_directory(write_manifest):
    directory = write_manifest(DOCUMENT)

    manifest = AssetManifest.from_path(directory)

    assert manifest.directory == directory.resolve()
    assert [str(e.id) for e in manifest.entries] == [
        "abc123:current",
        "abc123:replica",
        "img1:current",
    ]


def test_entries_are_parsed_from_camel_case(write_manifest):
    manifest = AssetManifest.from_path(write_manifest(DOCUMENT))
    file_entry, _, image_entry = manifest.entries

    assert isinstance(file_entry, FileManifestEntry)
    assert file_entry.type == "file"
    assert file_entry.source.packaging is FileAssetPackaging.ZIP_DIRECTORY
    assert file_entry.destination.bucket_name == "assets-${AWS::AccountId}"
    assert file_entry.destination.assume_role_arn == "arn:aws:iam::123456789012:role/publish"

    assert isinstance(image_entry, DockerImageManifestEntry)
    assert image_entry.type == "container-image"
    assert image_entry.source.docker_build_args == {"A": "1"}
    assert image_entry.source.cache_from[0].params == {"ref": "repo:cache"}
    assert image_entry.destination.image_tag == "img1"


def test_select_filters_entries(write_manifest):
    manifest = AssetManifest.from_path(write_manifest(DOCUMENT))

    by_asset = manifest.select([DestinationPattern.parse("abc123")])
    by_dest = manifest.select([DestinationPattern.parse(":current")])
    everything = manifest.select([])

    assert [str(e.id) for e in by_asset.entries] == ["abc123:current", "abc123:replica"]
    assert [str(e.id) for e in by_dest.entries] == ["abc123:current", "img1:current"]
    assert everything is manifest


def test_select_reports_unmatched_patterns(write_manifest):
    manifest = AssetManifest.from_path(write_manifest(DOCUMENT))

    with pytest.raises(ValidationError, match="missing:\\*"):
        manifest.select([DestinationPattern.parse("abc123"), DestinationPattern.parse("missing")])


def test_destination_pattern_parsing():
    assert DestinationPattern.parse("a") == DestinationPattern("a", None)
    assert DestinationPattern.parse("a:b") == DestinationPattern("a", "b")
    assert DestinationPattern.parse(":b") == DestinationPattern(None, "b")
    assert DestinationPattern("a", "b").matches(DestinationIdentifier("a", "b"))
    assert not DestinationPattern("a", "c").matches(DestinationIdentifier("a", "b"))

    with pytest.raises(ValidationError):
        DestinationPattern.parse("a:b:c")


def test_list_describes_each_entry(write_manifest):
    manifest = AssetManifest.from_path(write_manifest(DOCUMENT))

    lines = manifest.list()

    assert lines[0] == (
        "abc123:current file asset.abc123 (zip) => s3://assets-${AWS::AccountId}/abc123.zip "
        "(<default region>)"
    )
    assert lines[1].endswith("(eu-west-1)")
    assert lines[2] == "img1:current container-image asset.img1 => repo:img1 (<default region>)"


def test_missing_manifest_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        AssetManifest.from_path(tmp_path)


def test_invalid_json_is_a_configuration_error(tmp_path):
    (tmp_path / "assets.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="not valid JSON"):
        AssetManifest.from_path(tmp_path)


def test_schema_violation_is_a_configuration_error(write_manifest):
    directory = write_manifest(
        {"files": {"a": {"source": {"path": "x"}, "destinations": {"d": {"bucketName": "b"}}}}}
    )

    with pytest.raises(ConfigurationError, match="Invalid asset manifest"):
        AssetManifest.from_path(directory)


def test_entries_are_immutable(write_manifest):
    entry = AssetManifest.from_path(write_manifest(DOCUMENT)).entries[0]

    with pytest.raises(Exception):
        entry.destination.bucket_name = "other"  # type: ignore[misc]
