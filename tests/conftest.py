"""
Shared fakes for the MNet sidecar tests.

No test spawns a real Headscale process or talks to a real server: process
handles and control-plane clients are replaced by the fakes below.
"""

import os
import sys
from typing import Any, Callable, List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mnet.local.control_client import VersionProbe
from mnet.local.relay import RelayNode


class FakeProcess:
    """Stands in for a ProcessHandle. Exits only when the test says so."""

    def __init__(self, pid: int = 100, exits_on_wait: bool = True) -> None:
        self.pid = pid
        self.signals: List[int] = []
        self.killed = False
        self.exits_on_wait = exits_on_wait
        self._exit_handler: Optional[Callable[[Optional[int]], None]] = None

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)

    def on_exit(self, callback: Callable[[Optional[int]], None]) -> None:
        self._exit_handler = callback

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.exits_on_wait

    def kill(self) -> None:
        self.killed = True

    def emit_exit(self, code: Optional[int] = 1) -> None:
        if self._exit_handler:
            self._exit_handler(code)


class ProcessFactoryStub:
    """Records spawn calls and hands out FakeProcess instances in order."""

    def __init__(self, processes: Optional[List[FakeProcess]] = None) -> None:
        self.processes = processes
        self.calls: List[dict] = []
        self.spawned: List[FakeProcess] = []

    def __call__(self, binary: str, args: List[str], env: Any) -> FakeProcess:
        self.calls.append({"binary": binary, "args": list(args), "env": dict(env)})
        if self.processes:
            process = self.processes[min(len(self.spawned), len(self.processes) - 1)]
        else:
            process = FakeProcess(pid=100 + len(self.spawned))
        self.spawned.append(process)
        return process


class FakeClient:
    """Stands in for ControlPlaneClient."""

    def __init__(self, version: Optional[str] = "v0.24.1", compatible: bool = True, healthy: bool = True) -> None:
        self.version = version
        self.compatible = compatible
        self.healthy = healthy
        self.probe_calls = 0
        self.health_calls = 0
        self.auth_key_payloads: List[Any] = []
        self.policies: List[Any] = []

    def probe_version(self) -> VersionProbe:
        self.probe_calls += 1
        return VersionProbe(self.compatible, self.version)

    def health_check(self) -> bool:
        self.health_calls += 1
        return self.healthy

    def issue_auth_key(self, payload: Any) -> Any:
        self.auth_key_payloads.append(payload)
        return {"preAuthKey": {"key": "pak-123", "reusable": False}}

    def list_nodes(self) -> Any:
        return {"nodes": []}

    def update_policy(self, payload: Any) -> Any:
        self.policies.append(payload)
        return {}


SELF_NODE = RelayNode(
    id="self-1",
    region_id=1,
    name="relay-self-1",
    host_name="self-1.mesh.local",
    ipv4="10.0.0.1",
    stun_port=3478,
    relay_port=443,
)

PUBLIC_NODE = RelayNode(
    id="public-1",
    region_id=2,
    name="relay-public-1",
    host_name="public-1.mesh.example",
    ipv4="203.0.113.10",
    stun_port=3478,
    relay_port=443,
)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def process_factory():
    return ProcessFactoryStub()
