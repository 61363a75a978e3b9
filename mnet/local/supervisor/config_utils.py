import shutil
import logging
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)


def resolve_binary(binary_path: str) -> Optional[Path]:
    """Resolves the Headscale executable either as a path or through PATH."""
    candidate = Path(binary_path)
    if candidate.is_file():
        return candidate
    found = shutil.which(binary_path)
    return Path(found) if found else None


def check_configuration(binary_path: str, config_path: str) -> bool:
    """
    Validates that the Headscale binary and its configuration file exist.

    :param binary_path: The configured Headscale executable.
    :param config_path: The configuration file handed to `headscale serve`.
    :return: True if both are found, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    all_ok = True

    binary = resolve_binary(binary_path)
    if binary is None:
        log.error(f"CONFIG CHECK FAILED: Headscale not found at '{binary_path}'")
        all_ok = False
    else:
        log.info(f"Config Check OK: Found Headscale at '{binary}'")

    if not Path(config_path).is_file():
        log.error(f"CONFIG CHECK FAILED: Headscale config not found at '{config_path}'")
        all_ok = False
    else:
        log.info(f"Config Check OK: Found Headscale config at '{config_path}'")

    return all_ok
