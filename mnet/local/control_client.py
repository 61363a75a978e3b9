import re
import json
import logging
import requests
from typing import Any, Dict, NamedTuple, Optional

from mnet.exceptions import TransportError

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
MIN_COMPATIBLE_MINOR = 24

_VERSION_PATTERN = re.compile(r"^v?(\d+)\.(\d+)\.")


class VersionProbe(NamedTuple):
    compatible: bool
    version: Optional[str]


def normalize_base_url(value: str) -> str:
    """Strips trailing slashes so paths can be appended directly."""
    return value.rstrip("/")


def is_compatible_version(value: str) -> bool:
    """
    Checks a reported Headscale version against the supported range.

    Versions from 0.24.x onwards, including any 1.x and later, are accepted.
    Empty or malformed strings are rejected.

    :param value: The version string, with or without a leading 'v'.
    :return: True if the version is supported.
    """
    match = _VERSION_PATTERN.match(value.strip())
    if not match:
        return False
    major, minor = int(match.group(1)), int(match.group(2))
    if major >= 1:
        return True
    return minor >= MIN_COMPATIBLE_MINOR


def decode_body(text: str) -> Any:
    """
    Decodes a response body as JSON.

    An empty body yields an empty dict. A body that is not valid JSON yields
    ``{"raw": text}`` so a successful status is never masked by a parse error.
    """
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


class ControlPlaneClient:
    """Typed calls against the Headscale HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None
    ) -> None:
        """
        :param base_url: Root URL of the Headscale server.
        :param api_key: Bearer credential attached to every request.
        :param session: The HTTP transport. A new `requests.Session` by default.
        :param timeout: Handed through to the transport. None disables it.
        """
        self.base_url = normalize_base_url(base_url)
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        request_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        body = json.dumps(payload) if payload is not None else None
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, data=body, headers=request_headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(path, detail=str(e)) from e

        if not response.ok:
            raise TransportError(path, response.status_code)

        return decode_body(response.text)

    def probe_version(self) -> VersionProbe:
        """
        Asks the server for its version and evaluates compatibility.

        :return: A VersionProbe; `version` is None when the server did not report one.
        """
        payload = self._request("GET", f"{API_PREFIX}/version")
        version = payload.get("version") if isinstance(payload, dict) else None
        if not isinstance(version, str):
            version = None

        compatible = is_compatible_version(version) if version else False
        log.debug(f"Headscale reported version {version!r} (compatible: {compatible}).")
        return VersionProbe(compatible, version)

    def health_check(self) -> bool:
        """Returns True on any 2xx health response. Never raises."""
        try:
            self._request("GET", f"{API_PREFIX}/health")
            return True
        except Exception as e:
            log.debug(f"Headscale health check failed: {e}")
            return False

    def issue_auth_key(self, payload: Any) -> Any:
        return self._request("POST", f"{API_PREFIX}/preauth-key", payload)

    def list_nodes(self) -> Any:
        return self._request("GET", f"{API_PREFIX}/nodes")

    def update_policy(self, payload: Any) -> Any:
        return self._request("PUT", f"{API_PREFIX}/acl-policy", payload)
