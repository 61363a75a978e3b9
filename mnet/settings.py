"""
This module contains the configuration settings for the MNet sidecar.
It defines paths, the Headscale process and API settings, relay (DERP) settings
and logging configuration. Values can be overridden through the environment or a `.env` file.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("MNET_BASE_DIR", pathlib.Path.cwd())).resolve()
DATA_DIR = BASE_DIR / "data" / "mnet"
OVERRIDES_JSON_PATH = DATA_DIR / "overrides.json"

#* --- Plugin Identity ---
PLUGIN_ID = os.getenv("MNET_PLUGIN_ID", "com.meristem.mnet")

#* --- Headscale Process Settings ---
HEADSCALE_BINARY_PATH = os.getenv("MNET_HEADSCALE_BIN", "headscale")
HEADSCALE_CONFIG_PATH = os.getenv("MNET_HEADSCALE_CONFIG", "./data/mnet/headscale.yaml")
MAX_RESTART_ATTEMPTS = int(os.getenv("MNET_MAX_RESTARTS", "3"))
GRACEFUL_SHUTDOWN_TIMEOUT = 10 # seconds before force-killing

#* --- Headscale API Settings ---
HEADSCALE_API_URL = os.getenv("MNET_HEADSCALE_API_URL", "http://localhost:8079")
HEADSCALE_API_KEY = os.getenv("MNET_HEADSCALE_API_KEY", "mnet-dev-key")
# Empty means no timeout is passed to the HTTP transport.
CONTROL_API_TIMEOUT = float(os.getenv("MNET_CONTROL_API_TIMEOUT", "0")) or None

#* --- Relay (DERP) Settings ---
RELAY_MODE = os.getenv("MNET_RELAY_MODE", "hybrid")
RELAY_PUBLIC_PATH = os.getenv("MNET_RELAY_PUBLIC_PATH", "")
RELAY_SELF_HOSTED_PATH = os.getenv("MNET_RELAY_SELF_HOSTED_PATH", "")
RELAY_COOLDOWN_MS = int(os.getenv("MNET_RELAY_COOLDOWN_MS", "10000"))

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Application variables ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "MAX_RESTART_ATTEMPTS", "GRACEFUL_SHUTDOWN_TIMEOUT",
    # Relay
    "RELAY_MODE", "RELAY_COOLDOWN_MS", "RELAY_PUBLIC_PATH", "RELAY_SELF_HOSTED_PATH",
    # Logging
    "LOG_BUFFER_FLUSH_INTERVAL",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_FLUSH_INTERVAL = 10
