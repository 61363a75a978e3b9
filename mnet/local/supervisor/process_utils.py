import os
import sys
import psutil
import logging
import threading
import subprocess
from typing import Any, Callable, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)

ExitCallback = Callable[[Optional[int]], None]


#* --- Process Handle ---
class ProcessHandle:
    """
    Owns one spawned Headscale process.

    A handle is never reused: every restart creates a new one. The exit
    observer runs on a daemon thread which waits for the process and then
    fires the registered callback once.
    """

    def __init__(self, process: psutil.Popen, name: str = "headscale") -> None:
        self._process = process
        self.name = name
        self.pid: int = process.pid

    def send_signal(self, sig: int) -> None:
        """Sends a signal, ignoring a process that has already gone away."""
        try:
            self._process.send_signal(sig)
        except (psutil.NoSuchProcess, ProcessLookupError):
            log.debug(f"Process {self.name} (PID {self.pid}) no longer exists, signal {sig} not sent.")

    def on_exit(self, callback: ExitCallback) -> None:
        """Arms the exit observer."""
        def _watch() -> None:
            code = self._process.wait()
            log.debug(f"Process {self.name} (PID {self.pid}) exited with code {code}.")
            callback(code)

        threading.Thread(
            target=_watch,
            daemon=True,
            name=f"{self.name.capitalize()}ExitWatcher-{self.pid}"
        ).start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Waits for the process to exit.

        :return: True if the process exited within the timeout.
        """
        try:
            self._process.wait(timeout=timeout)
            return True
        except (subprocess.TimeoutExpired, psutil.TimeoutExpired):
            return False

    def kill(self) -> None:
        """Forcefully kills the process."""
        try:
            log.warning(f"Killing stubborn process {self.name} (PID {self.pid}).")
            self._process.kill()
        except (psutil.NoSuchProcess, ProcessLookupError):
            log.warning(f"Process {self.pid} no longer exists, skipping forceful kill.")


#* --- Process Creation ---
ProcessFactory = Callable[[str, List[str], Mapping[str, str]], ProcessHandle]


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {}


def get_process_args(binary: str, config_path: str) -> List[str]:
    """Returns the command-line arguments for the Headscale serve mode."""
    return [binary, "serve", "--config", config_path]


def spawn_process(binary: str, args: List[str], env: Mapping[str, str]) -> ProcessHandle:
    """
    Launches the coordination server.

    Standard input and output are discarded, standard error is inherited.
    The environment is the host environment overlaid with `env`.

    :param binary: The executable path, also the first element of `args`.
    :param args: The full argument vector.
    :param env: Environment overrides.
    :return: A handle for the new process.
    """
    log.info(f"Starting process: {' '.join(args)}...")
    try:
        p = psutil.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=None,
            env={**os.environ, **env},
            **_get_popen_creation_flags()
        )
    except OSError as e:
        log.critical(f"Failed to start process '{binary}': {e}", exc_info=True)
        raise

    log.info(f"{os.path.basename(binary).capitalize()} started successfully with PID: {p.pid}")
    return ProcessHandle(p, name=os.path.basename(binary))
