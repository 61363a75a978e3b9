import json
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from mnet.exceptions import RelayConfigurationError, RelayFormatError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayNode:
    """A DERP relay server used when direct peer connectivity fails."""
    id: str
    region_id: int
    name: str
    host_name: str
    stun_port: int
    relay_port: int
    ipv4: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Renders the node in the external document shape."""
        data: Dict[str, Any] = {
            "id": self.id,
            "regionId": self.region_id,
            "name": self.name,
            "hostName": self.host_name,
            "stunPort": self.stun_port,
            "derpPort": self.relay_port,
        }
        if self.ipv4 is not None:
            data["ipv4"] = self.ipv4
        return data


class NodeParseResult(NamedTuple):
    """Either a complete node or the reason the item was rejected."""
    node: Optional[RelayNode]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.node is not None


# (document field, expected type); all required
_NODE_SCHEMA = (
    ("id", str),
    ("regionId", int),
    ("name", str),
    ("hostName", str),
    ("stunPort", int),
    ("derpPort", int),
)


def _has_type(value: Any, expected: type) -> bool:
    # bool is a subclass of int and never a valid port or region. Integral
    # floats (443.0) are accepted, JSON does not tell them apart.
    if expected is int:
        if isinstance(value, float):
            return value.is_integer()
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


def parse_node(value: Any) -> NodeParseResult:
    """
    Validates one node object against the relay document schema.

    :param value: A decoded JSON/YAML value.
    :return: A NodeParseResult carrying the node or an error message.
    """
    if not isinstance(value, dict):
        return NodeParseResult(None, "node item is not an object")

    for field, expected in _NODE_SCHEMA:
        if field not in value:
            return NodeParseResult(None, f"missing required field '{field}'")
        if not _has_type(value[field], expected):
            return NodeParseResult(None, f"field '{field}' must be of type {expected.__name__}")
        if expected is str and not value[field]:
            return NodeParseResult(None, f"field '{field}' must not be empty")

    ipv4 = value.get("ipv4")
    if ipv4 is not None and not isinstance(ipv4, str):
        return NodeParseResult(None, "field 'ipv4' must be of type str")

    return NodeParseResult(RelayNode(
        id=value["id"],
        region_id=int(value["regionId"]),
        name=value["name"],
        host_name=value["hostName"],
        stun_port=int(value["stunPort"]),
        relay_port=int(value["derpPort"]),
        ipv4=ipv4,
    ))


def _extract_items(document: Any) -> Optional[List[Any]]:
    """Returns the node list of a bare array or a `{"nodes": [...]}` object."""
    if isinstance(document, list):
        return document
    if isinstance(document, dict) and isinstance(document.get("nodes"), list):
        return document["nodes"]
    return None


def parse_nodes_document(raw: str) -> List[RelayNode]:
    """
    Parses an external relay document. Any invalid element fails the whole document.

    :param raw: The JSON text.
    :return: The parsed nodes in document order.
    :raises RelayFormatError: On invalid JSON, an unexpected shape or an invalid node.
    """
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RelayFormatError(f"Invalid public DERP config JSON: {e}") from e

    items = _extract_items(document)
    if items is None:
        raise RelayFormatError("Public DERP config must be an array or { nodes: [] }")

    nodes: List[RelayNode] = []
    for index, item in enumerate(items):
        result = parse_node(item)
        if not result.ok:
            raise RelayFormatError(f"Public DERP config contains invalid node item at index {index}: {result.error}")
        nodes.append(result.node)
    return nodes


def coerce_nodes(items: Iterable[Any]) -> List[RelayNode]:
    """
    Converts statically configured items to nodes, skipping invalid ones.

    Items that already are RelayNode instances are kept as is.
    """
    nodes: List[RelayNode] = []
    for index, item in enumerate(items):
        if isinstance(item, RelayNode):
            nodes.append(item)
            continue
        result = parse_node(item)
        if result.ok:
            nodes.append(result.node)
        else:
            log.warning(f"Skipping invalid static relay node at index {index}: {result.error}")
    return nodes


def load_static_nodes(path: str) -> List[RelayNode]:
    """
    Loads self-hosted relay nodes from a YAML (or JSON) file.

    The file holds a bare list or a mapping with a `nodes` list. Invalid
    entries are skipped with a warning.

    :param path: The file path. An empty path yields no nodes.
    :raises RelayConfigurationError: If the file cannot be read or parsed.
    """
    if not path:
        return []

    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise RelayConfigurationError(f"Failed to load self-hosted DERP nodes from '{path}': {e}") from e

    if document is None:
        return []
    items = _extract_items(document)
    if items is None:
        raise RelayConfigurationError(f"Self-hosted DERP file '{path}' must be a list or contain a 'nodes' list")

    nodes = coerce_nodes(items)
    log.info(f"Loaded {len(nodes)} self-hosted DERP node(s) from {path}.")
    return nodes


def dedupe_nodes(nodes: Iterable[RelayNode]) -> List[RelayNode]:
    """
    Removes duplicate ids, last write wins.

    A replaced node keeps the position of the first occurrence of its id.
    """
    by_id: Dict[str, RelayNode] = {}
    for node in nodes:
        by_id[node.id] = node
    return list(by_id.values())
