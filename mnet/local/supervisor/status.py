from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SupervisorStatus:
    """
    Snapshot of the supervisor state.

    Instances are never mutated. The supervisor publishes a new snapshot
    (via `dataclasses.replace`) on every transition.
    """
    running: bool = False
    restart_count: int = 0
    compatible: bool = False
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "restartCount": self.restart_count,
            "compatible": self.compatible,
            "version": self.version,
        }
