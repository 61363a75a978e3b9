import math
import time
import logging
import threading
from typing import Callable, Mapping, Optional

from mnet.local.relay.nodes import RelayNode
from mnet.local.relay.topology import RelayTopologyBuilder

log = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MS = 10_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def normalize_cooldown(value: object) -> int:
    """Returns `value` floored to an int if it is at least 1, else the default cooldown."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value >= 1:
        return int(math.floor(value))
    return DEFAULT_COOLDOWN_MS


def _rank(latency: Optional[float]) -> float:
    # Missing and non-finite (NaN, inf) values count as unmeasured.
    if latency is None or not math.isfinite(latency):
        return math.inf
    return latency


class RelaySelector:
    """
    Picks the lowest-latency relay node with switch hysteresis.

    Once a node is active, a better node only replaces it after the cooldown
    has elapsed since the last switch. This keeps jittering measurements near
    a tie from flapping the relay.
    """

    def __init__(
        self,
        builder: RelayTopologyBuilder,
        cooldown_ms: Optional[int] = None,
        now: Optional[Callable[[], float]] = None
    ) -> None:
        """
        :param builder: Resolves the candidate node set.
        :param cooldown_ms: Minimum dwell time between switches, in milliseconds.
        :param now: Clock returning milliseconds. Monotonic by default.
        """
        self.builder = builder
        self.cooldown_ms = normalize_cooldown(cooldown_ms)
        self._now = now or _monotonic_ms
        self._lock = threading.Lock()
        self._active_node_id: Optional[str] = None
        self._last_switch_at: float = 0

    def select_node(self, latency_by_node_id: Mapping[str, float]) -> Optional[RelayNode]:
        """
        Returns the relay node to use for the given latency measurements.

        Nodes without a finite measurement rank after every measured node. Ties keep
        the resolution order.

        :param latency_by_node_id: Measured latency per node id.
        :return: The chosen node, or None if no node is configured.
        """
        nodes = self.builder.resolve_nodes()
        if not nodes:
            return None

        ordered = sorted(nodes, key=lambda node: _rank(latency_by_node_id.get(node.id)))
        best = ordered[0]

        with self._lock:
            current_ts = self._now()
            active_id = self._active_node_id
            if active_id and active_id != best.id and current_ts - self._last_switch_at < self.cooldown_ms:
                current = next((node for node in nodes if node.id == active_id), None)
                if current is not None:
                    log.debug(f"Keeping relay '{active_id}' during cooldown (preferred: '{best.id}').")
                    return current

            if active_id != best.id:
                log.info(f"Switching relay node from '{active_id}' to '{best.id}'.")
                self._active_node_id = best.id
                self._last_switch_at = current_ts

            return best
