"""
Local package for the MNet sidecar.

This package provides the sidecar-level configuration through the
app_globals object, together with the Headscale supervisor, the relay
topology and the plugin runtime.
"""

from .config import effective_settings as app_globals

__all__ = ["app_globals"]
