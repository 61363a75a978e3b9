import signal
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Optional

from mnet.exceptions import IncompatibleVersionError
from mnet.local.control_client import ControlPlaneClient
from mnet.local.supervisor.status import SupervisorStatus
from mnet.local.supervisor.process_utils import ProcessFactory, ProcessHandle, get_process_args, spawn_process

log = logging.getLogger(__name__)


class ProcessSupervisor:
    """
    Manages the lifecycle of the Headscale coordination server.

    Startup is gated on API version compatibility. An unexpected exit of the
    process triggers a restart until `max_restarts` is spent; after that only an
    explicit `start()` brings it back, and further exits are not restarted.
    """

    def __init__(
        self,
        binary_path: str,
        config_path: str,
        client: ControlPlaneClient,
        max_restarts: int = 3,
        process_factory: Optional[ProcessFactory] = None,
        env: Optional[Dict[str, str]] = None
    ) -> None:
        self.binary_path = binary_path
        self.config_path = config_path
        self.max_restarts = max_restarts
        self.env: Dict[str, str] = dict(env or {})
        self._client = client
        self._process_factory = process_factory or spawn_process

        # Exit notifications arrive on watcher threads.
        self._lock = threading.RLock()
        self._process: Optional[ProcessHandle] = None
        self._restart_count = 0
        self._exhausted = False
        self._status = SupervisorStatus()

    #* --- Status ---
    def _publish(self, **changes: Any) -> None:
        """Replaces the visible status snapshot as a whole."""
        with self._lock:
            self._status = replace(self._status, **changes)

    def get_status(self) -> SupervisorStatus:
        return self._status

    def get_client(self) -> ControlPlaneClient:
        return self._client

    @property
    def restart_budget_exhausted(self) -> bool:
        return self._exhausted

    @property
    def pid(self) -> Optional[int]:
        current = self._process
        return current.pid if current else None

    #* --- Process Lifecycle ---
    def _spawn(self) -> None:
        """Launches a new process and arms its exit observer. Caller holds the lock."""
        args = get_process_args(self.binary_path, self.config_path)
        handle = self._process_factory(self.binary_path, args, self.env)
        self._process = handle
        handle.on_exit(lambda code: self._handle_exit(handle, code))

    def _handle_exit(self, handle: ProcessHandle, code: Optional[int]) -> None:
        """
        Exit observer for one handle.

        Exits of handles the supervisor no longer owns (after `stop()` or a
        restart) are ignored.
        """
        with self._lock:
            if handle is not self._process:
                log.debug(f"Ignoring exit of released process (PID {handle.pid}, code {code}).")
                return

            self._process = None
            self._publish(running=False)
            log.warning(f"Headscale (PID {handle.pid}) exited unexpectedly with code {code}.")

            if self._restart_count >= self.max_restarts:
                self._exhausted = True
                log.critical(
                    f"Headscale has been restarted {self._restart_count} times. "
                    "Halting restart attempts."
                )
                return

            self._restart_count += 1
            self._publish(restart_count=self._restart_count)
            log.warning(f"Restart attempt #{self._restart_count} of {self.max_restarts}...")
            try:
                self._spawn()
            except OSError as e:
                log.critical(f"Failed to restart Headscale: {e}")
                return
            self._publish(running=True)
            log.info("Headscale restarted successfully.")

    def start(self) -> SupervisorStatus:
        """
        Starts Headscale after checking that its API version is supported.

        :return: The status snapshot after startup.
        :raises IncompatibleVersionError: If the server version is not supported.
        """
        with self._lock:
            if self._process is not None:
                return self._status

        probe = self._client.probe_version()
        if not probe.compatible:
            self._publish(compatible=False, version=probe.version)
            log.error(f"Refusing to start Headscale: unsupported version {probe.version or 'unknown'}.")
            raise IncompatibleVersionError(probe.version)

        with self._lock:
            # A concurrent start() may have won while probing.
            if self._process is not None:
                return self._status
            self._spawn()
            self._publish(running=True, compatible=True, version=probe.version)
            log.info(f"Headscale {probe.version} is running (PID {self._process.pid}).")
            return self._status

    def stop(self) -> None:
        """Sends SIGTERM to Headscale. The handle is released before signalling."""
        with self._lock:
            current = self._process
            if current is None:
                return
            self._process = None
            self._publish(running=False)

        log.info(f"Stopping Headscale (PID {current.pid})...")
        current.send_signal(signal.SIGTERM)

    def shutdown(self, timeout: float = 10) -> None:
        """
        Stops Headscale and waits for it to exit, force-killing it after `timeout` seconds.

        :param timeout: Seconds to wait for a graceful exit.
        """
        with self._lock:
            current = self._process
        if current is None:
            return

        self.stop()
        if not current.wait(timeout):
            log.warning(f"Headscale did not terminate within {timeout}s. Forcing shutdown...")
            current.kill()

    def reload_config(self) -> None:
        """Asks Headscale to reload its configuration (SIGHUP)."""
        with self._lock:
            current = self._process
        if current is None:
            return

        sighup = getattr(signal, "SIGHUP", None)
        if sighup is None:
            log.warning("Configuration reload is not supported on this platform.")
            return
        log.info(f"Sending reload signal to Headscale (PID {current.pid}).")
        current.send_signal(sighup)

    def health_check(self) -> bool:
        """
        Checks Headscale health through its API.

        A failed check marks the status not running but never restarts the
        process; restarts are driven by process exit only.
        """
        with self._lock:
            current = self._process
        if current is None:
            self._publish(running=False)
            return False

        healthy = self._client.health_check()
        if not healthy:
            log.warning("Headscale health check failed.")
            self._publish(running=False)
        return healthy
