"""
MNet Custom Exceptions

Errors raised by the sidecar core. Every error carries a machine-readable
``code`` which the plugin runtime forwards to the host unchanged.
"""

from typing import Optional


class MeshError(Exception):
    """Base exception for MNet sidecar errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or 'INTERNAL_ERROR'
        super().__init__(self.message)


class IncompatibleVersionError(MeshError):
    """Raised when the coordination server reports an unsupported version."""

    def __init__(self, version: Optional[str]):
        self.version = version
        super().__init__(
            f"Incompatible Headscale version: {version or 'unknown'}",
            "INCOMPATIBLE_VERSION"
        )


class TransportError(MeshError):
    """Raised when a control-plane API request fails."""

    def __init__(self, path: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        self.path = path
        self.status_code = status_code
        if status_code is not None:
            message = f"Headscale request failed: {path} -> {status_code}"
        else:
            message = f"Headscale request failed: {path} -> {detail or 'no response'}"
        super().__init__(message, "TRANSPORT_ERROR")


class RelayConfigurationError(MeshError):
    """Raised when the relay source set is empty or cannot be read."""

    def __init__(self, message: str = "Relay configuration error", code: str = "CONFIG_ERROR"):
        super().__init__(message, code)


class RelayFormatError(RelayConfigurationError):
    """Raised when an external relay document is malformed."""

    def __init__(self, message: str = "Invalid public DERP config"):
        super().__init__(message, "FORMAT_ERROR")


class RuntimeNotInitializedError(MeshError):
    """Raised when a service is invoked before the runtime created its managers."""

    def __init__(self, component: str):
        self.component = component
        super().__init__(f"{component} is not initialized", "NOT_INITIALIZED")


class MethodNotFoundError(MeshError):
    """Raised for invoke requests naming an unknown method."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"METHOD_NOT_FOUND:{method}", "METHOD_NOT_FOUND")
