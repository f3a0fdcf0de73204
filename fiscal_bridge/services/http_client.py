from __future__ import annotations

import logging
from typing import Any

import requests

from fiscal_bridge.app import config
from fiscal_bridge.services.errors import ExternalApiError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin JSON client over a requests.Session.

    One instance per shop credential, used as a context manager so the
    session is closed after the request. Every call is blocking and bounded by
    `timeout`. Transport failures and non-2xx answers surface as `error_class`.
    """

    error_class: type[ExternalApiError] = ExternalApiError

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        *,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.EXTERNAL_API_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        self.session.headers.update(headers)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise self.error_class(f"timeout after {self.timeout}s on {method} {path}") from exc
        except requests.RequestException as exc:
            raise self.error_class(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            raise self.error_class(_error_message(response), status_code=response.status_code)
        return response

    def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._send(method, path, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise self.error_class(f"invalid JSON from {method} {path}", status_code=response.status_code) from exc

    def request_bytes(self, method: str, path: str, **kwargs: Any) -> bytes:
        return self._send(method, path, **kwargs).content

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:500]

    if isinstance(body, dict):
        for key in ("error", "errors", "message"):
            if body.get(key):
                value = body[key]
                return value if isinstance(value, str) else str(value)
    return str(body)[:500]
