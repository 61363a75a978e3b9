import math
import time
import uuid
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from mnet.local import app_globals
from mnet.local.telemetry import build_health_report
from mnet.local.control_client import ControlPlaneClient
from mnet.local.supervisor import ProcessSupervisor
from mnet.local.relay import (
    RelayConfig, RelayMode, RelayNode, RelaySelector, RelayTopologyBuilder, coerce_nodes, load_static_nodes
)
from mnet.exceptions import MeshError, MethodNotFoundError, RuntimeNotInitializedError

log = logging.getLogger(__name__)


def _read_string(value: Any, fallback: str) -> str:
    return value if isinstance(value, str) and value else fallback


def _read_nodes(value: Any, fallback: Tuple[RelayNode, ...]) -> Tuple[RelayNode, ...]:
    if not isinstance(value, list):
        return fallback
    return tuple(coerce_nodes(value))


@dataclass(frozen=True)
class RuntimeConfig:
    """Effective configuration of one runtime instance."""
    binary_path: str
    config_path: str
    api_url: str
    api_key: str
    relay_mode: RelayMode = RelayMode.HYBRID
    relay_self_hosted: Tuple[RelayNode, ...] = ()
    relay_public: Tuple[RelayNode, ...] = ()
    relay_public_path: Optional[str] = None
    relay_cooldown_ms: Optional[int] = None
    max_restarts: int = 3
    api_timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Any = app_globals) -> "RuntimeConfig":
        """Builds the default configuration from the merged settings."""
        return cls(
            binary_path=settings.HEADSCALE_BINARY_PATH,
            config_path=settings.HEADSCALE_CONFIG_PATH,
            api_url=settings.HEADSCALE_API_URL,
            api_key=settings.HEADSCALE_API_KEY,
            relay_mode=RelayMode.parse(settings.RELAY_MODE),
            relay_self_hosted=tuple(load_static_nodes(settings.RELAY_SELF_HOSTED_PATH)),
            relay_public_path=settings.RELAY_PUBLIC_PATH or None,
            relay_cooldown_ms=settings.RELAY_COOLDOWN_MS,
            max_restarts=settings.MAX_RESTART_ATTEMPTS,
            api_timeout=settings.CONTROL_API_TIMEOUT,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], defaults: "RuntimeConfig") -> "RuntimeConfig":
        """
        Applies a plugin init payload on top of `defaults`.

        Empty or non-string values fall back to the defaults. A missing relay
        mode keeps the default mode, an unknown one falls back to hybrid.
        Invalid relay node items are skipped.
        """
        public_path = _read_string(payload.get("derpPublicPath"), defaults.relay_public_path or "")
        mode = payload.get("derpMode")
        return cls(
            binary_path=_read_string(payload.get("binaryPath"), defaults.binary_path),
            config_path=_read_string(payload.get("configPath"), defaults.config_path),
            api_url=_read_string(payload.get("apiUrl"), defaults.api_url),
            api_key=_read_string(payload.get("apiKey"), defaults.api_key),
            relay_mode=defaults.relay_mode if mode is None else RelayMode.parse(mode),
            relay_self_hosted=_read_nodes(payload.get("derpSelfHosted"), defaults.relay_self_hosted),
            relay_public=_read_nodes(payload.get("derpPublic"), defaults.relay_public),
            relay_public_path=public_path or None,
            relay_cooldown_ms=defaults.relay_cooldown_ms,
            max_restarts=defaults.max_restarts,
            api_timeout=defaults.api_timeout,
        )

    def relay_config(self) -> RelayConfig:
        return RelayConfig(
            mode=self.relay_mode,
            self_hosted_nodes=self.relay_self_hosted,
            public_nodes=self.relay_public,
            public_nodes_path=self.relay_public_path,
            cooldown_ms=self.relay_cooldown_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Renders the configuration for the host. The API key is masked."""
        return {
            "binaryPath": self.binary_path,
            "configPath": self.config_path,
            "apiUrl": self.api_url,
            "apiKey": "***" if self.api_key else "",
            "derpMode": self.relay_mode.value,
            "derpSelfHosted": [node.to_dict() for node in self.relay_self_hosted],
            "derpPublic": [node.to_dict() for node in self.relay_public],
            "derpPublicPath": self.relay_public_path,
        }


def default_supervisor_factory(config: RuntimeConfig) -> ProcessSupervisor:
    client = ControlPlaneClient(config.api_url, config.api_key, timeout=config.api_timeout)
    return ProcessSupervisor(
        binary_path=config.binary_path,
        config_path=config.config_path,
        client=client,
        max_restarts=config.max_restarts,
    )


def _log_message(message: Dict[str, Any]) -> None:
    log.debug(f"Health report: {message['payload']}")


class MeshRuntime:
    """
    The invocation surface used by the plugin host.

    The host transport hands every INVOKE request to `invoke()`, which never
    raises: failures are returned as `{"success": False, "error": {...}}`.
    Health reports are passed to the `emit` callable.
    """

    def __init__(
        self,
        emit: Optional[Callable[[Dict[str, Any]], None]] = None,
        supervisor_factory: Optional[Callable[[RuntimeConfig], ProcessSupervisor]] = None,
        relay_read_text: Optional[Callable[[str], str]] = None,
        clock: Optional[Callable[[], float]] = None,
        settings: Any = app_globals
    ) -> None:
        self.settings = settings
        self.plugin_id: str = settings.PLUGIN_ID
        self.config: Optional[RuntimeConfig] = None
        self.started = False
        self.supervisor: Optional[ProcessSupervisor] = None
        self.relay_builder: Optional[RelayTopologyBuilder] = None
        self.relay_selector: Optional[RelaySelector] = None

        self._emit = emit or _log_message
        self._supervisor_factory = supervisor_factory or default_supervisor_factory
        self._relay_read_text = relay_read_text
        self._clock = clock

        self._handlers: Dict[str, Callable[[Any], Any]] = {
            "onInit": self.on_init,
            "onStart": self.on_start,
            "onStop": self.on_stop,
            "onDestroy": self.on_destroy,
            "network-mode-status": self._mode_status,
            "network-status": self._status,
            "network-authkey": self._issue_auth_key,
            "network-nodes": self._list_nodes,
            "network-acl": self._update_policy,
            "network-reload": self._reload,
            "network-derp-map": self._derp_map,
            "network-relay-select": self._select_relay,
        }

    #* --- Invocation ---
    def invoke(self, method: str, params: Any = None) -> Dict[str, Any]:
        """
        Dispatches one invoke request.

        :param method: A lifecycle hook or service name.
        :param params: The request parameters.
        :return: The invoke response.
        """
        log.debug(f"Invoke: {method}")
        try:
            handler = self._handlers.get(method)
            if handler is None:
                raise MethodNotFoundError(method)
            return {"success": True, "data": handler(params)}
        except MeshError as e:
            log.error(f"Invoke '{method}' failed: {e.message}")
            return {"success": False, "error": {"code": e.code, "message": e.message}}
        except Exception as e:
            log.error(f"Unexpected error during invoke '{method}': {e}", exc_info=True)
            return {"success": False, "error": {"code": "INTERNAL_ERROR", "message": str(e)}}

    def _create_managers(self) -> None:
        if self.config is None:
            self.config = RuntimeConfig.from_settings(self.settings)

        self.supervisor = self._supervisor_factory(self.config)
        self.relay_builder = RelayTopologyBuilder(self.config.relay_config(), read_text=self._relay_read_text)
        self.relay_selector = RelaySelector(
            self.relay_builder,
            cooldown_ms=self.config.relay_cooldown_ms,
            now=self._clock
        )

    def _require_supervisor(self) -> ProcessSupervisor:
        if self.supervisor is None:
            raise RuntimeNotInitializedError("M-Net manager")
        return self.supervisor

    def _require_relay(self) -> Tuple[RelayTopologyBuilder, RelaySelector]:
        if self.relay_builder is None or self.relay_selector is None:
            raise RuntimeNotInitializedError("DERP manager")
        return self.relay_builder, self.relay_selector

    def emit_health(self, status: str) -> None:
        pid = self.supervisor.pid if self.supervisor else None
        self._emit({
            "id": str(uuid.uuid4()),
            "type": "HEALTH",
            "pluginId": self.plugin_id,
            "timestamp": int(time.time() * 1000),
            "payload": build_health_report(status, managed_pid=pid),
        })

    #* --- Lifecycle Hooks ---
    def on_init(self, params: Any) -> Dict[str, Any]:
        payload = params.get("config") if isinstance(params, dict) else None
        if not isinstance(payload, dict):
            payload = {}

        if self.supervisor is not None:
            log.info("Re-initializing runtime. Stopping the current Headscale process.")
            self.supervisor.stop()
            self.started = False

        self.config = RuntimeConfig.from_payload(payload, RuntimeConfig.from_settings(self.settings))
        self._create_managers()
        log.info(f"Runtime initialized (relay mode: {self.config.relay_mode.value}).")
        return {"hook": "onInit", "config": self.config.to_dict()}

    def on_start(self, params: Any = None) -> Dict[str, Any]:
        if self.supervisor is None:
            self._create_managers()

        supervisor = self._require_supervisor()
        supervisor.start()
        healthy = supervisor.health_check()
        self.started = healthy
        self.emit_health("healthy" if healthy else "unhealthy")
        return {"hook": "onStart"}

    def on_stop(self, params: Any = None) -> Dict[str, Any]:
        if self.supervisor is not None:
            self.supervisor.stop()
        self.started = False
        self.emit_health("degraded")
        return {"hook": "onStop"}

    def on_destroy(self, params: Any = None) -> Dict[str, Any]:
        if self.supervisor is not None:
            self.supervisor.shutdown(self.settings.GRACEFUL_SHUTDOWN_TIMEOUT)
        self.started = False
        return {"hook": "onDestroy"}

    #* --- Services ---
    def _mode_status(self, params: Any) -> Dict[str, Any]:
        running = bool(self.started and self.supervisor is not None and self.supervisor.health_check())
        mode = "M-NET" if running else "DIRECT"
        return {
            "plugin_id": self.plugin_id,
            "desired_mode": mode,
            "mode": mode,
            "healthy": running,
        }

    def _status(self, params: Any) -> Dict[str, Any]:
        supervisor = self._require_supervisor()
        status = supervisor.get_status().to_dict()
        status["restartBudgetExhausted"] = supervisor.restart_budget_exhausted
        return status

    @staticmethod
    def _payload(params: Any) -> Dict[str, Any]:
        payload = params.get("payload") if isinstance(params, dict) else None
        return payload if isinstance(payload, dict) else {}

    def _issue_auth_key(self, params: Any) -> Any:
        return self._require_supervisor().get_client().issue_auth_key(self._payload(params))

    def _list_nodes(self, params: Any) -> Any:
        return self._require_supervisor().get_client().list_nodes()

    def _update_policy(self, params: Any) -> Any:
        return self._require_supervisor().get_client().update_policy(self._payload(params))

    def _reload(self, params: Any) -> Dict[str, Any]:
        supervisor = self._require_supervisor()
        supervisor.reload_config()
        return supervisor.get_status().to_dict()

    def _derp_map(self, params: Any) -> Dict[str, Any]:
        builder, _ = self._require_relay()
        return builder.build_topology().to_dict()

    def _select_relay(self, params: Any) -> Optional[Dict[str, Any]]:
        _, selector = self._require_relay()
        raw = params.get("latency") if isinstance(params, dict) else None
        latency = {
            str(node_id): value
            for node_id, value in (raw or {}).items()
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
        } if isinstance(raw, dict) else {}
        node = selector.select_node(latency)
        return node.to_dict() if node else None
