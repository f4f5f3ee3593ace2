import logging
import httpx
from typing import Any, Dict, Optional, Tuple
from ..config import settings
from ..errors import NetworkError

logger = logging.getLogger(__name__)

# name -> (filename, data, content_type)
MultipartFiles = Dict[str, Tuple[str, bytes, str]]


class HttpTransport:
    """
    Thin blocking wrapper around httpx.

    Returns (status_code, parsed_json_or_None). Anything below HTTP (DNS,
    connect, TLS, timeouts) is raised as NetworkError so callers can treat it
    as retryable.
    """

    def __init__(self, timeout: float = settings.REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.BaseTransport] = None):
        self.client = httpx.Client(
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self.client.close()

    def request(self, method: str, url: str, token: Optional[str] = None, **kwargs) -> Tuple[int, Optional[Any]]:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"{method} {url}")
        try:
            resp = self.client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Network error on {method} {url}: {e}")
            raise NetworkError(str(e) or e.__class__.__name__) from e

        logger.debug(f"Response code: {resp.status_code}")
        return resp.status_code, self._parse(resp)

    def _parse(self, resp: httpx.Response) -> Optional[Any]:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            logger.warning(f"Invalid JSON response from {resp.request.url} (HTTP {resp.status_code})")
            return None

    def get_json(self, url: str, token: Optional[str] = None) -> Tuple[int, Optional[Any]]:
        return self.request("GET", url, token=token)

    def post_json(self, url: str, data: Any, token: Optional[str] = None) -> Tuple[int, Optional[Any]]:
        return self.request("POST", url, token=token, json=data)

    def post_form(self, url: str, data: Dict[str, str]) -> Tuple[int, Optional[Any]]:
        return self.request("POST", url, data=data)

    def post_multipart(self, url: str, files: MultipartFiles, token: Optional[str] = None) -> Tuple[int, Optional[Any]]:
        return self.request("POST", url, token=token, files=files)
