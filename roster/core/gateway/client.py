"""Low-level HTTP client for the hosted backend (auth admin, REST, storage).

Every request authenticates with the service-role key, which the backend
accepts both as ``apikey`` and as a bearer token.
"""
from __future__ import annotations
import os
from typing import Any, Dict, Optional

import requests

from .exceptions import GatewayAPIError

REQUEST_TIMEOUT = 10


class GatewayClient:
    """HTTP client for the backend APIs with centralized error handling.

    Usage:
        client = GatewayClient("https://project.supabase.co", service_key)
        resp = client.get("/rest/v1/profiles", params={"select": "id"})
    """

    def __init__(self, base_url: Optional[str] = None, service_key: str = "", timeout: int = REQUEST_TIMEOUT):
        """Initialize the client.

        Args:
            base_url: Backend base URL (defaults to SUPABASE_URL env var)
            service_key: Service-role key used for every call
            timeout: Per-request timeout in seconds
        """
        self.base_url = (base_url or os.environ.get("SUPABASE_URL", "http://localhost:54321")).rstrip("/")
        self._service_key = service_key
        self.timeout = timeout

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Execute a request against ``base_url + path``.

        Raises:
            GatewayAPIError: On HTTP error or transport failure
        """
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=self._headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayAPIError(503, str(exc), url) from exc
        self._handle_error(resp)
        return resp

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        return self.request("DELETE", path, **kwargs)

    def public_url(self, path: str) -> str:
        """Absolute URL for a backend path (used for public storage links)."""
        return f"{self.base_url}{path}"

    def _handle_error(self, resp: requests.Response) -> None:
        """Raise GatewayAPIError for 4xx/5xx responses.

        REST and auth errors carry JSON bodies with ``message``/``msg`` and an
        optional ``code``; anything else falls back to the raw text.
        """
        if resp.status_code < 400:
            return
        message = resp.text
        code = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("msg") or body.get("error_description") or body.get("error") or message
            raw_code = body.get("code")
            code = str(raw_code) if raw_code is not None else None
        raise GatewayAPIError(resp.status_code, message, resp.url, code)
