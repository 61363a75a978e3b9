"""
Custom logging handlers.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]
