"""
Tests for the Headscale ProcessSupervisor.

Validates:
1. Version-gated startup (no spawn for unsupported versions)
2. Bounded restart on unexpected exit
3. stop() racing with a late exit notification
4. reload, health check and shutdown semantics
5. Status snapshots are replaced, never mutated
"""

import signal
import dataclasses

import pytest

from mnet.exceptions import IncompatibleVersionError
from mnet.local.supervisor import ProcessSupervisor, SupervisorStatus

from conftest import FakeClient, FakeProcess, ProcessFactoryStub


def _make_supervisor(client=None, factory=None, max_restarts=3):
    return ProcessSupervisor(
        binary_path="headscale",
        config_path="/tmp/headscale.yaml",
        client=client or FakeClient(),
        max_restarts=max_restarts,
        process_factory=factory or ProcessFactoryStub(),
    )


class TestStartup:

    def test_start_spawns_once_for_compatible_version(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(client=FakeClient(version="v0.24.1"), factory=factory)

        status = supervisor.start()

        assert len(factory.spawned) == 1
        assert status.running is True
        assert status.compatible is True
        assert status.version == "v0.24.1"
        assert status.restart_count == 0

    def test_start_uses_serve_arguments(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        call = factory.calls[0]
        assert call["binary"] == "headscale"
        assert call["args"] == ["headscale", "serve", "--config", "/tmp/headscale.yaml"]
        assert call["env"] == {}

    def test_start_refuses_incompatible_version(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(client=FakeClient(version="v0.23.0", compatible=False), factory=factory)

        with pytest.raises(IncompatibleVersionError, match="Incompatible Headscale version"):
            supervisor.start()

        assert factory.spawned == []
        status = supervisor.get_status()
        assert status.running is False
        assert status.compatible is False
        assert status.version == "v0.23.0"

    def test_incompatible_error_carries_code(self):
        supervisor = _make_supervisor(client=FakeClient(version=None, compatible=False))
        with pytest.raises(IncompatibleVersionError) as exc_info:
            supervisor.start()
        assert exc_info.value.code == "INCOMPATIBLE_VERSION"
        assert "unknown" in exc_info.value.message

    def test_start_is_noop_while_running(self):
        client = FakeClient()
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(client=client, factory=factory)

        first = supervisor.start()
        second = supervisor.start()

        assert first is second
        assert client.probe_calls == 1
        assert len(factory.spawned) == 1


class TestRestart:

    def test_exit_triggers_restart(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        factory.spawned[0].emit_exit(1)

        assert len(factory.spawned) == 2
        status = supervisor.get_status()
        assert status.running is True
        assert status.restart_count == 1
        assert supervisor.pid == factory.spawned[1].pid

    def test_restarts_are_bounded(self):
        processes = [FakeProcess(pid=100 + i) for i in range(4)]
        factory = ProcessFactoryStub(processes)
        client = FakeClient()
        supervisor = _make_supervisor(client=client, factory=factory, max_restarts=3)
        supervisor.start()

        for process in processes:
            process.emit_exit(1)

        status = supervisor.get_status()
        assert status.restart_count == 3
        assert status.running is False
        assert len(factory.spawned) == 4
        assert supervisor.restart_budget_exhausted is True
        # Restarts never re-probe the version.
        assert client.probe_calls == 1

    def test_explicit_start_after_exhaustion_spawns_without_restarts(self):
        processes = [FakeProcess(pid=100 + i) for i in range(4)]
        factory = ProcessFactoryStub(processes)
        client = FakeClient()
        supervisor = _make_supervisor(client=client, factory=factory, max_restarts=1)
        supervisor.start()
        processes[0].emit_exit(1)
        processes[1].emit_exit(1)

        status = supervisor.start()

        assert status.running is True
        assert len(factory.spawned) == 3
        assert client.probe_calls == 2

        processes[2].emit_exit(1)

        assert len(factory.spawned) == 3
        assert supervisor.get_status().running is False
        assert supervisor.get_status().restart_count == 1
        assert supervisor.restart_budget_exhausted is True

    def test_explicit_start_after_exhaustion_is_still_version_gated(self):
        processes = [FakeProcess(pid=100 + i) for i in range(2)]
        factory = ProcessFactoryStub(processes)
        client = FakeClient()
        supervisor = _make_supervisor(client=client, factory=factory, max_restarts=0)
        supervisor.start()
        processes[0].emit_exit(1)

        client.compatible, client.version = False, "v0.23.0"
        with pytest.raises(IncompatibleVersionError):
            supervisor.start()
        assert len(factory.spawned) == 1

    def test_zero_restart_budget(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory, max_restarts=0)
        supervisor.start()

        factory.spawned[0].emit_exit(0)

        assert len(factory.spawned) == 1
        assert supervisor.get_status().running is False
        assert supervisor.get_status().restart_count == 0

    def test_exit_of_replaced_process_is_ignored(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()
        first = factory.spawned[0]
        first.emit_exit(1)

        # A duplicate notification from the superseded handle.
        first.emit_exit(1)

        assert supervisor.get_status().restart_count == 1
        assert len(factory.spawned) == 2

    def test_restart_spawn_failure_is_absorbed(self):
        class FailingFactory(ProcessFactoryStub):
            def __call__(self, binary, args, env):
                if self.spawned:
                    raise OSError("exec format error")
                return super().__call__(binary, args, env)

        factory = FailingFactory()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        factory.spawned[0].emit_exit(1)

        status = supervisor.get_status()
        assert status.running is False
        assert status.restart_count == 1


class TestStop:

    def test_stop_sends_sigterm(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.stop()

        assert factory.spawned[0].signals == [signal.SIGTERM]
        assert supervisor.get_status().running is False
        assert supervisor.pid is None

    def test_not_running_is_published_before_signalling(self):
        observed = []

        class ObservingProcess(FakeProcess):
            def send_signal(self, sig):
                observed.append(supervisor.get_status().running)
                super().send_signal(sig)

        factory = ProcessFactoryStub([ObservingProcess()])
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.stop()

        assert observed == [False]

    def test_start_after_stop_is_not_overwritten_by_stop(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.stop()
        supervisor.start()

        assert supervisor.get_status().running is True
        assert supervisor.pid == factory.spawned[1].pid

    def test_late_exit_after_stop_does_not_restart(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.stop()
        factory.spawned[0].emit_exit(0)

        status = supervisor.get_status()
        assert status.restart_count == 0
        assert status.running is False
        assert len(factory.spawned) == 1

    def test_stop_without_process_is_noop(self):
        supervisor = _make_supervisor()
        supervisor.stop()
        assert supervisor.get_status() == SupervisorStatus()

    def test_start_after_stop_spawns_new_handle(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()
        supervisor.stop()

        status = supervisor.start()

        assert status.running is True
        assert len(factory.spawned) == 2
        assert factory.spawned[0] is not factory.spawned[1]

    def test_shutdown_waits_for_exit(self):
        factory = ProcessFactoryStub([FakeProcess(exits_on_wait=True)])
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.shutdown(timeout=1)

        assert factory.spawned[0].signals == [signal.SIGTERM]
        assert factory.spawned[0].killed is False

    def test_shutdown_kills_stubborn_process(self):
        factory = ProcessFactoryStub([FakeProcess(exits_on_wait=False)])
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.shutdown(timeout=0)

        assert factory.spawned[0].killed is True
        assert supervisor.get_status().running is False


class TestReloadAndHealth:

    @pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="SIGHUP is not available on this platform")
    def test_reload_sends_sighup_without_status_change(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()
        before = supervisor.get_status()

        supervisor.reload_config()

        assert factory.spawned[0].signals == [signal.SIGHUP]
        after = supervisor.get_status()
        assert after.restart_count == before.restart_count
        assert after.running is True

    @pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="SIGHUP is not available on this platform")
    def test_reload_then_stop_signals(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        supervisor.start()

        supervisor.reload_config()
        supervisor.stop()

        assert signal.SIGHUP in factory.spawned[0].signals
        assert signal.SIGTERM in factory.spawned[0].signals

    def test_reload_without_process_is_noop(self):
        supervisor = _make_supervisor()
        supervisor.reload_config()
        assert supervisor.get_status().running is False

    def test_health_check_without_process(self):
        client = FakeClient()
        supervisor = _make_supervisor(client=client)

        assert supervisor.health_check() is False
        assert client.health_calls == 0

    def test_health_check_delegates_to_client(self):
        supervisor = _make_supervisor()
        supervisor.start()
        assert supervisor.health_check() is True
        assert supervisor.get_status().running is True

    def test_failed_health_check_marks_not_running_without_restart(self):
        client = FakeClient(healthy=False)
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(client=client, factory=factory)
        supervisor.start()

        assert supervisor.health_check() is False

        status = supervisor.get_status()
        assert status.running is False
        assert status.restart_count == 0
        assert len(factory.spawned) == 1

    def test_get_client(self):
        client = FakeClient()
        supervisor = _make_supervisor(client=client)
        assert supervisor.get_client() is client


class TestStatusSnapshots:

    def test_snapshot_is_frozen(self):
        status = SupervisorStatus()
        with pytest.raises(dataclasses.FrozenInstanceError):
            status.running = True

    def test_transitions_publish_new_snapshots(self):
        factory = ProcessFactoryStub()
        supervisor = _make_supervisor(factory=factory)
        initial = supervisor.get_status()

        started = supervisor.start()
        factory.spawned[0].emit_exit(1)
        restarted = supervisor.get_status()

        assert initial.running is False
        assert started.running is True and started.restart_count == 0
        assert restarted is not started
        assert restarted.restart_count == 1

    def test_to_dict(self):
        status = SupervisorStatus(running=True, restart_count=2, compatible=True, version="v0.25.0")
        assert status.to_dict() == {
            "running": True,
            "restartCount": 2,
            "compatible": True,
            "version": "v0.25.0",
        }
