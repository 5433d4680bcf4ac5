"""
HTTP Helpers

Thin JSON client over a requests session, shared by the cloud backends.
Every request is debug-logged and every provider error is turned into a
BackendOperationError.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import requests
from loguru import logger

from ..errors import BackendOperationError, ResourceNotFound

DEFAULT_TIMEOUT = 30


def _log_response(response, *args, **kwargs):
    request = response.request
    url = urlsplit(request.url)
    logger.debug(f"http {request.method} {url.netloc}{url.path} -> {response.status_code}")


def new_session() -> requests.Session:
    """Session with request logging"""
    session = requests.Session()
    session.hooks["response"].append(_log_response)
    return session


def raise_for_provider_status(response, provider: str) -> None:
    """
    Raise the error matching a failed response.

    Raises:
        ResourceNotFound: HTTP 404
        BackendOperationError: any other 4xx/5xx status
    """
    status = response.status_code
    if status < 400:
        return

    message = f"{status} {response.text[:500]}"
    if status == 404:
        raise ResourceNotFound(message, provider=provider, status_code=status)
    raise BackendOperationError(message, provider=provider, status_code=status)


class JsonClient:
    """
    JSON API client bound to a base URL.

    Args:
        provider: name used in error messages
        base_url: prefix for relative paths
        session: requests session, a fresh logged one by default
        timeout: per-request timeout in seconds
        headers: sent with every request
    """

    def __init__(
        self,
        provider: str,
        base_url: str = "",
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else new_session()
        self.timeout = timeout
        self.headers = dict(headers or {})

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def send(self, method: str, path: str, **kwargs):
        """Send a request and return the successful response"""
        kwargs.setdefault("timeout", self.timeout)
        if self.headers:
            kwargs["headers"] = {**self.headers, **kwargs.get("headers", {})}
        try:
            response = self.session.request(method, self.url(path), **kwargs)
        except requests.RequestException as e:
            raise BackendOperationError(f"{method} {path} failed: {e}", provider=self.provider) from e

        raise_for_provider_status(response, self.provider)
        return response

    def request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and return the decoded JSON body, None when empty"""
        response = self.send(method, path, **kwargs)
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendOperationError(
                f"{method} {path} returned a non JSON body", provider=self.provider
            ) from e

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)
