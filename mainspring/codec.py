"""
State codec - versioned JSON encoding of state snapshots.

Format version 4 is written. Version 3 (the module-nested layout) is still
read and upgraded in memory. Anything newer than 4 is rejected outright
rather than decoded on a best-effort basis.
"""

import json
import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from .errors import MalformedPayloadError, UnsupportedVersionError
from .models import OutputValue, ResourceInstance, StateSnapshot

logger = logging.getLogger(__name__)

CURRENT_VERSION = 4
MIN_SUPPORTED_VERSION = 3

ROOT_MODULE = "root"


class StateCodec:
    """Encode/decode StateSnapshot to the durable state file format."""

    def __init__(self, tool_version: str = ""):
        """
        Initialize StateCodec.

        Args:
            tool_version: Version tag stamped into every encoded payload
        """
        if not tool_version:
            from . import __version__
            tool_version = __version__
        self.tool_version = tool_version

    def encode(self, snapshot: StateSnapshot) -> bytes:
        """
        Encode a snapshot as a version 4 payload.

        Args:
            snapshot: Snapshot to encode

        Returns:
            UTF-8 encoded JSON document
        """
        payload = {
            "version": CURRENT_VERSION,
            "tool-version": self.tool_version,
            "serial": snapshot.serial,
            "lineage": snapshot.lineage,
            "outputs": {
                name: output.model_dump(mode="json")
                for name, output in sorted(snapshot.outputs.items())
            },
            "resources": [
                {"address": address, **instance.model_dump(mode="json")}
                for address, instance in sorted(snapshot.resources.items())
            ],
        }
        return (json.dumps(payload, indent=2) + "\n").encode("utf-8")

    def decode(self, data: bytes) -> StateSnapshot:
        """
        Decode a payload of any supported version.

        Args:
            data: Raw bytes of a state file

        Returns:
            Decoded (and upgraded) StateSnapshot

        Raises:
            UnsupportedVersionError: version outside the supported range
            MalformedPayloadError: bytes are not a valid state document
        """
        try:
            document = json.loads(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(f"state is not valid UTF-8: {e}") from e
        except (ValueError, RecursionError) as e:
            # Also covers integer digit limits and nesting too deep to parse
            raise MalformedPayloadError(f"state is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise MalformedPayloadError("state must be a JSON object")

        version = document.get("version")
        # bool is an int subclass; reject it explicitly
        if not isinstance(version, int) or isinstance(version, bool):
            raise MalformedPayloadError("state has no integer 'version' field")
        if version > CURRENT_VERSION or version < MIN_SUPPORTED_VERSION:
            raise UnsupportedVersionError(version, MIN_SUPPORTED_VERSION, CURRENT_VERSION)

        try:
            if version == 3:
                logger.debug("Upgrading version 3 state payload in memory")
                fields = _upgrade_v3(document)
            else:
                fields = _read_v4(document)
            return StateSnapshot.model_validate(fields)
        except ValidationError as e:
            raise MalformedPayloadError(f"state does not match the version {version} schema: {e}") from e
        except (TypeError, ValueError, AttributeError) as e:
            raise MalformedPayloadError(f"state does not match the version {version} schema: {e}") from e


def _read_v4(document: Dict[str, Any]) -> Dict[str, Any]:
    resources_list = document.get("resources", [])
    if not isinstance(resources_list, list):
        raise ValueError("'resources' must be a list")

    resources: Dict[str, ResourceInstance] = {}
    for entry in resources_list:
        if not isinstance(entry, dict) or "address" not in entry:
            raise ValueError("every resource needs an 'address'")
        entry = dict(entry)
        address = entry.pop("address")
        if address in resources:
            raise ValueError(f"duplicate resource address {address!r}")
        resources[address] = ResourceInstance.model_validate(entry)

    return {
        "lineage": document.get("lineage"),
        "serial": document.get("serial"),
        "tool_version": document.get("tool-version", ""),
        "resources": resources,
        "outputs": document.get("outputs", {}),
    }


def _module_prefix(path: List[str]) -> str:
    if not path or path[0] != ROOT_MODULE:
        raise ValueError(f"module path must start with {ROOT_MODULE!r}: {path!r}")
    return "".join(f"module.{name}." for name in path[1:])


def _upgrade_v3(document: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the module-nested version 3 layout into version 4 fields."""
    modules = document.get("modules", [])
    if not isinstance(modules, list):
        raise ValueError("'modules' must be a list")

    resources: Dict[str, ResourceInstance] = {}
    outputs: Dict[str, OutputValue] = {}
    for module in modules:
        path = module.get("path", [ROOT_MODULE])
        prefix = _module_prefix(path)
        for name, legacy in module.get("resources", {}).items():
            address = prefix + name
            if address in resources:
                raise ValueError(f"duplicate resource address {address!r}")
            primary = legacy.get("primary") or {}
            resources[address] = ResourceInstance(
                provider=legacy.get("provider", ""),
                dependencies=legacy.get("depends_on", []),
                attributes=primary.get("attributes", {}),
            )
        # Only root outputs are visible outside the configuration
        if prefix == "":
            for name, legacy in module.get("outputs", {}).items():
                outputs[name] = OutputValue.model_validate(legacy)

    return {
        "lineage": document.get("lineage"),
        "serial": document.get("serial"),
        "tool_version": document.get("tool_version", ""),
        "resources": resources,
        "outputs": outputs,
    }
