"""
MNet sidecar.

Supervises a self-hosted Headscale coordination server and derives the DERP
relay topology used as NAT-traversal fallback.
"""

__version__ = "0.3.0"
