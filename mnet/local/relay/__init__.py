"""
Relay (DERP) topology package.

Loads relay node definitions from static configuration and external
documents, groups them into regions and selects the active relay node.
"""

from .nodes import RelayNode, coerce_nodes, dedupe_nodes, load_static_nodes, parse_node, parse_nodes_document
from .topology import RelayConfig, RelayMode, RelayRegion, RelayTopology, RelayTopologyBuilder
from .selector import DEFAULT_COOLDOWN_MS, RelaySelector

__all__ = [
    "RelayNode", "RelayConfig", "RelayMode", "RelayRegion", "RelayTopology",
    "RelayTopologyBuilder", "RelaySelector", "DEFAULT_COOLDOWN_MS",
    "coerce_nodes", "dedupe_nodes", "load_static_nodes", "parse_node", "parse_nodes_document",
]
