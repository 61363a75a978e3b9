import logging
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from mnet.exceptions import RelayConfigurationError
from mnet.local.relay.nodes import RelayNode, dedupe_nodes, parse_nodes_document

log = logging.getLogger(__name__)


class RelayMode(str, Enum):
    SELF_HOSTED_ONLY = "self-hosted-only"
    PUBLIC_ONLY = "public-only"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Any, default: Optional["RelayMode"] = None) -> "RelayMode":
        """Returns the matching mode, or `default` (hybrid) for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return default or cls.HYBRID


@dataclass(frozen=True)
class RelayConfig:
    mode: RelayMode
    self_hosted_nodes: Sequence[RelayNode] = ()
    public_nodes: Sequence[RelayNode] = ()
    public_nodes_path: Optional[str] = None
    cooldown_ms: Optional[int] = None


@dataclass(frozen=True)
class RelayRegion:
    region_id: int
    region_code: str
    nodes: Tuple[RelayNode, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        rendered = []
        for node in self.nodes:
            entry: Dict[str, Any] = {
                "Name": node.name,
                "RegionID": node.region_id,
                "HostName": node.host_name,
            }
            if node.ipv4 is not None:
                entry["IPv4"] = node.ipv4
            entry["STUNPort"] = node.stun_port
            entry["RelayPort"] = node.relay_port
            rendered.append(entry)
        return {
            "RegionID": self.region_id,
            "RegionCode": self.region_code,
            "Nodes": rendered,
        }


@dataclass(frozen=True)
class RelayTopology:
    regions: Dict[str, RelayRegion] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Renders the DERP map document."""
        return {"Regions": {key: region.to_dict() for key, region in self.regions.items()}}


def region_code(region_id: int) -> str:
    return f"region-{region_id}"


def group_by_region(nodes: Sequence[RelayNode]) -> RelayTopology:
    """Partitions nodes by region id, keeping resolution order inside each region."""
    grouped: Dict[int, List[RelayNode]] = {}
    for node in nodes:
        grouped.setdefault(node.region_id, []).append(node)

    return RelayTopology({
        str(region_id): RelayRegion(region_id, region_code(region_id), tuple(members))
        for region_id, members in grouped.items()
    })


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


class RelayTopologyBuilder:
    """
    Resolves the active relay node set for the configured mode and groups it
    into regions. Nothing is cached; every call re-reads the sources.
    """

    def __init__(self, config: RelayConfig, read_text: Optional[Callable[[str], str]] = None) -> None:
        """
        :param config: The relay configuration.
        :param read_text: Reads the external document. Defaults to a UTF-8 file read.
        """
        self.config = config
        self._read_text = read_text or _read_text

    def load_public_nodes(self) -> List[RelayNode]:
        """
        Loads the external node set: the inline list if it is non-empty,
        otherwise the document at `public_nodes_path`, otherwise nothing.
        """
        if self.config.public_nodes:
            return dedupe_nodes(self.config.public_nodes)

        path = self.config.public_nodes_path
        if path:
            try:
                raw = self._read_text(path)
            except OSError as e:
                raise RelayConfigurationError(f"Failed to read public DERP config '{path}': {e}") from e
            nodes = dedupe_nodes(parse_nodes_document(raw))
            log.debug(f"Loaded {len(nodes)} public DERP node(s) from {path}.")
            return nodes

        return []

    def resolve_nodes(self) -> List[RelayNode]:
        """
        Returns the deduplicated node set for the active mode.

        :raises RelayConfigurationError: If a mode needing external nodes has none.
        :raises RelayFormatError: If the external document is malformed.
        """
        mode = RelayMode(self.config.mode)
        self_hosted = dedupe_nodes(self.config.self_hosted_nodes)

        if mode == RelayMode.SELF_HOSTED_ONLY:
            return self_hosted

        public_nodes = self.load_public_nodes()
        if not public_nodes:
            raise RelayConfigurationError(f"{mode.value} mode requires non-empty public DERP source")

        if mode == RelayMode.PUBLIC_ONLY:
            return public_nodes

        return dedupe_nodes([*self_hosted, *public_nodes])

    def build_topology(self) -> RelayTopology:
        nodes = self.resolve_nodes()
        topology = group_by_region(nodes)
        log.debug(f"Built DERP map with {len(nodes)} node(s) in {len(topology.regions)} region(s).")
        return topology
