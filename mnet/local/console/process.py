import logging
from typing import List

from mnet.local.runtime import MeshRuntime
from mnet.local.console.handler import (
    display_status, display_health, display_relay_map, display_nodes, handle_relay_select,
    handle_authkey_command, handle_check_config, handle_config_command, toggle_verbose_logging, print_help
)

log = logging.getLogger(__name__)
runtime = MeshRuntime()


def _report(result: dict) -> None:
    if not result["success"]:
        print(f"ERROR [{result['error']['code']}]: {result['error']['message']}")


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'config').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "init": lambda: _report(runtime.invoke("onInit", {"config": {}})),
        "start": lambda: _report(runtime.invoke("onStart")),
        "stop": lambda: _report(runtime.invoke("onStop")),
        "reload": lambda: _report(runtime.invoke("network-reload")),
        "status": lambda: display_status(runtime),
        "health": lambda: display_health(runtime),
        "relay-map": lambda: display_relay_map(runtime),
        "relay-select": lambda: handle_relay_select(runtime, args),
        "authkey": lambda: handle_authkey_command(runtime, args),
        "nodes": lambda: display_nodes(runtime),
        "check-config": handle_check_config,
        "config": lambda: handle_config_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        runtime.invoke("onDestroy")
        return True

    if command in command_map:
        if command not in ("init", "check-config", "config", "verbose", "help") and runtime.config is None:
            runtime.invoke("onInit", {"config": {}})
        command_map[command]()
    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")

    return False
