"""
Logging module for the sidecar.
This module provides the logging setup and the optional Grafana Loki handler.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
