import json
import logging
from typing import List

from mnet.local import app_globals
from mnet.local.runtime import MeshRuntime
from mnet.local.supervisor.config_utils import check_configuration

log = logging.getLogger(__name__)


def _print_result(title: str, result: dict) -> None:
    """Prints an invoke response, or its error."""
    if not result["success"]:
        error = result["error"]
        print(f"\nERROR [{error['code']}]: {error['message']}\n")
        return
    print(f"\n--- {title} ---")
    print(json.dumps(result["data"], indent=2))
    print("-" * (len(title) + 8) + "\n")


def display_status(runtime: MeshRuntime) -> None:
    """Displays the supervisor status snapshot."""
    if runtime.supervisor is None:
        print("\nHeadscale is STOPPED (runtime not initialized).\n")
        return

    supervisor = runtime.supervisor
    status = supervisor.get_status()
    print("\n--- Headscale Status ---")
    print(f"  Running       : {'YES' if status.running else 'NO'}")
    print(f"  PID           : {supervisor.pid or '-'}")
    print(f"  Version       : {status.version or 'unknown'} ({'compatible' if status.compatible else 'not compatible'})")
    print(f"  Restarts      : {status.restart_count}/{supervisor.max_restarts}")
    if supervisor.restart_budget_exhausted:
        print("\nWARNING: The restart budget is exhausted. Exits are no longer restarted; run 'init' to reset it.")
    print("-" * 24 + "\n")


def display_health(runtime: MeshRuntime) -> None:
    _print_result("Mode Status", runtime.invoke("network-mode-status"))


def display_relay_map(runtime: MeshRuntime) -> None:
    _print_result("DERP Map", runtime.invoke("network-derp-map"))


def handle_relay_select(runtime: MeshRuntime, args: List[str]) -> None:
    """Handles 'relay-select id=ms ...'."""
    latency = {}
    for arg in args:
        node_id, sep, value = arg.partition("=")
        if not sep:
            print(f"Ignoring malformed latency '{arg}'. Use <node-id>=<ms>.")
            continue
        try:
            latency[node_id] = float(value)
        except ValueError:
            print(f"Ignoring non-numeric latency for '{node_id}': '{value}'.")
    _print_result("Selected Relay", runtime.invoke("network-relay-select", {"latency": latency}))


def handle_authkey_command(runtime: MeshRuntime, args: List[str]) -> None:
    """Issues a pre-auth key. The optional argument is the JSON request payload."""
    payload = {}
    if args:
        try:
            payload = json.loads(" ".join(args))
        except json.JSONDecodeError as e:
            print(f"Invalid JSON payload: {e}")
            return
    _print_result("Pre-Auth Key", runtime.invoke("network-authkey", {"payload": payload}))


def display_nodes(runtime: MeshRuntime) -> None:
    _print_result("Nodes", runtime.invoke("network-nodes"))


def handle_check_config() -> None:
    """Validates the configured Headscale binary and config file."""
    if check_configuration(app_globals.HEADSCALE_BINARY_PATH, app_globals.HEADSCALE_CONFIG_PATH):
        print("Configuration check passed.")
    else:
        print("Configuration check failed. See the log output above.")


def _config_show():
    """Displays the current modifiable configuration settings."""
    print("\n--- Current Sidecar Configuration ---")
    print(f"(Overrides file: {app_globals.OVERRIDES_JSON_PATH})")
    for key in sorted(app_globals.MODIFIABLE_SETTINGS):
        print(f"  {key} = {app_globals.get(key, 'N/A')}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("Run 'init' (or restart the sidecar) for changes to take effect.")
    print("-------------------------------------\n")


def _config_set(args: List[str]):
    """Sets and persists a configuration setting."""
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return

    key, value_str = args[0].upper(), " ".join(args[1:])
    success, message = app_globals.update_setting(key, value_str)
    print(message if success else f"Error: {message}")


def _config_help():
    """Displays help for the config command."""
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting. Run 'init' to apply it.")
    print("  config help                - Show this help message.")
    print("Use 'check-config' to validate the Headscale binary and config paths.")


def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    app_globals.VERBOSE_LOGGING = not app_globals.VERBOSE_LOGGING
    new_level = logging.DEBUG if app_globals.VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if app_globals.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")


def print_help():
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  init                   - (Re)initialize the runtime from the current settings.")
    print("  start                  - Start Headscale after a version check.")
    print("  stop                   - Stop Headscale gracefully.")
    print("  reload                 - Ask Headscale to reload its configuration.")
    print("  status                 - Show the supervisor status.")
    print("  health                 - Run a health check and show the network mode.")
    print("  relay-map              - Show the DERP map for the configured relay mode.")
    print("  relay-select id=ms ... - Select a relay node from latency measurements.")
    print("  authkey [json]         - Issue a pre-auth key.")
    print("  nodes                  - List the nodes registered with Headscale.")
    print("  check-config           - Validate the Headscale binary and config paths.")
    print("  config <cmd>           - Manage configuration. Use 'config help' for more details.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  exit                   - Stop Headscale and exit the management console.")
    print()
