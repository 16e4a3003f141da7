"""Tests for the versioned state codec."""

import json
import sys

import pytest

from mainspring.codec import CURRENT_VERSION, StateCodec
from mainspring.errors import CorruptStateError, MalformedPayloadError, UnsupportedVersionError
from mainspring.models import OutputValue, ResourceInstance, StateSnapshot


@pytest.fixture
def codec():
    return StateCodec("9.9.9")


def _payload(**fields) -> bytes:
    document = {"version": CURRENT_VERSION, "lineage": "L1", "serial": 3, "resources": [], "outputs": {}}
    document.update(fields)
    return json.dumps(document).encode("utf-8")


def test_encode_layout(codec):
    """Test the encoded document carries the versioned schema fields."""
    snapshot = StateSnapshot(
        lineage="L1",
        serial=2,
        resources={
            "b": ResourceInstance(provider="p", dependencies=["a"]),
            "a": ResourceInstance(provider="p", attributes={"id": "i-1"}),
        },
        outputs={"url": OutputValue(value="http://localhost")},
    )
    document = json.loads(codec.encode(snapshot))

    assert document["version"] == CURRENT_VERSION
    assert document["tool-version"] == "9.9.9"
    assert document["lineage"] == "L1"
    assert document["serial"] == 2
    assert [r["address"] for r in document["resources"]] == ["a", "b"]
    assert document["resources"][1]["dependencies"] == ["a"]
    assert document["outputs"]["url"] == {"value": "http://localhost", "sensitive": False}


def test_decode_returns_encoded_snapshot(codec):
    """Test decode(encode(s)) reproduces the snapshot with the codec's tool version."""
    snapshot = StateSnapshot(
        lineage="L1",
        serial=5,
        tool_version="9.9.9",
        resources={"a": ResourceInstance(provider="p", attributes={"nested": {"k": [1, 2]}})},
        outputs={"secret": OutputValue(value="x", sensitive=True)},
    )
    assert codec.decode(codec.encode(snapshot)) == snapshot


def test_newer_version_is_unsupported(codec):
    """Test a payload from a newer tool is rejected, not partially decoded."""
    with pytest.raises(UnsupportedVersionError) as exc_info:
        codec.decode(_payload(version=CURRENT_VERSION + 1, resources=[{"address": "a", "new_field": 1}]))

    assert exc_info.value.version == CURRENT_VERSION + 1
    assert exc_info.value.maximum == CURRENT_VERSION
    assert "newer" in str(exc_info.value)


def test_too_old_version_is_unsupported(codec):
    with pytest.raises(UnsupportedVersionError) as exc_info:
        codec.decode(_payload(version=1))
    assert "older" in str(exc_info.value)


@pytest.mark.parametrize("data", [
    b"\xff\xfe\x00",
    b"{not json",
    b"[1, 2, 3]",
    b'{"lineage": "L1", "serial": 1}',
    b'{"version": "4", "lineage": "L1", "serial": 1}',
    b'{"version": true, "lineage": "L1", "serial": 1}',
])
def test_malformed_payloads(codec, data):
    """Test undecodable payloads raise MalformedPayloadError."""
    with pytest.raises(MalformedPayloadError):
        codec.decode(data)


@pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no integer digit limit")
def test_oversized_integer_is_malformed(codec):
    """Test an integer beyond the parser's digit limit is malformed, not a ValueError."""
    data = b'{"version": 4, "lineage": "L1", "serial": ' + b"9" * 5000 + b"}"
    with pytest.raises(MalformedPayloadError):
        codec.decode(data)


def test_deeply_nested_payload_is_malformed(codec):
    """Test nesting too deep to parse is malformed, not a RecursionError."""
    depth = 100000
    nested = b"[" * depth + b"]" * depth
    data = b'{"version": 4, "lineage": "L1", "serial": 1, "outputs": {"x": {"value": ' + nested + b"}}}"
    with pytest.raises(MalformedPayloadError):
        codec.decode(data)


def test_schema_violations_are_malformed(codec):
    with pytest.raises(MalformedPayloadError):
        codec.decode(_payload(serial=-1))
    with pytest.raises(MalformedPayloadError):
        codec.decode(_payload(lineage=None))
    with pytest.raises(MalformedPayloadError):
        codec.decode(_payload(resources={"a": {}}))
    with pytest.raises(MalformedPayloadError):
        codec.decode(_payload(resources=[{"provider": "p"}]))


def test_duplicate_addresses_are_malformed(codec):
    with pytest.raises(MalformedPayloadError):
        codec.decode(_payload(resources=[{"address": "a"}, {"address": "a"}]))


def test_codec_errors_are_corruption(codec):
    """Test the engine sees every decode failure as corrupt state."""
    with pytest.raises(CorruptStateError):
        codec.decode(b"")
    with pytest.raises(CorruptStateError):
        codec.decode(_payload(version=99))


def test_upgrade_version_3(codec):
    """Test the module-nested version 3 layout is flattened in memory."""
    legacy = {
        "version": 3,
        "tool_version": "0.0.9",
        "lineage": "L1",
        "serial": 7,
        "modules": [
            {
                "path": ["root"],
                "outputs": {"url": {"value": "http://web", "sensitive": False}},
                "resources": {
                    "docker_container.web": {
                        "provider": "provider.docker",
                        "depends_on": ["docker_network.net"],
                        "primary": {"attributes": {"id": "c-1"}},
                    },
                    "docker_network.net": {"provider": "provider.docker", "primary": {"attributes": {"id": "n-1"}}},
                },
            },
            {
                "path": ["root", "cache"],
                "outputs": {"internal": {"value": 1}},
                "resources": {"docker_container.redis": {"provider": "provider.docker"}},
            },
        ],
    }
    snapshot = codec.decode(json.dumps(legacy).encode("utf-8"))

    assert snapshot.lineage == "L1"
    assert snapshot.serial == 7
    assert snapshot.tool_version == "0.0.9"
    assert set(snapshot.resources) == {
        "docker_container.web",
        "docker_network.net",
        "module.cache.docker_container.redis",
    }
    assert snapshot.resources["docker_container.web"].dependencies == ["docker_network.net"]
    assert snapshot.resources["docker_container.web"].attributes == {"id": "c-1"}
    assert snapshot.resources["module.cache.docker_container.redis"].attributes == {}
    assert set(snapshot.outputs) == {"url"}

    # Re-encoding writes the current version
    assert json.loads(codec.encode(snapshot))["version"] == CURRENT_VERSION


def test_upgrade_version_3_rejects_bad_module_path(codec):
    legacy = {"version": 3, "lineage": "L1", "serial": 1, "modules": [{"path": ["child"], "resources": {}}]}
    with pytest.raises(MalformedPayloadError):
        codec.decode(json.dumps(legacy).encode("utf-8"))


def test_default_tool_version_is_package_version():
    from mainspring import __version__

    assert StateCodec().tool_version == __version__
