"""
Thin Admin REST client for one shop.

get()/post() return RestResponse(body, headers) so callers can read the
Link header for pagination. Throttled (429) and gateway (502/503/504)
responses are retried, waiting Retry-After capped at the call timeout and
never past the caller's deadline; everything else that is not 2xx raises
ShopifyHTTPError.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from tagger_errors import ShopifyHTTPError

RETRY_STATUSES = (429, 502, 503, 504)


# ---------- Helpers ----------
def normalize_host(h: str) -> str:
    """lowercase, strip scheme, drop leading www. and trailing slash."""
    h = (h or "").lower().strip()
    h = h.replace("https://", "").replace("http://", "")
    h = h.rstrip("/")
    return h[4:] if h.startswith("www.") else h


def header_value(headers: Optional[Mapping[str, Any]], name: str) -> Any:
    """Case-insensitive header lookup; works on plain dicts too."""
    if not headers:
        return None
    val = headers.get(name)
    if val is not None:
        return val
    wanted = name.lower()
    for k, v in headers.items():
        if str(k).lower() == wanted:
            return v
    return None


def _retry_delay(resp: requests.Response, backoff: float) -> float:
    raw = resp.headers.get("Retry-After")
    if raw:
        try:
            return max(float(raw), 0.0)
        except ValueError:
            pass
    return backoff


@dataclass(frozen=True)
class ShopSession:
    """Per-request session context: which shop, with which Admin token."""
    shop: str
    access_token: str


@dataclass
class RestResponse:
    body: Any
    headers: Mapping[str, Any]


class ShopifyRestClient:
    def __init__(self, shop: str, access_token: str, api_version: str = "2024-10",
                 timeout: float = 25.0, max_retries: int = 3,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.shop = normalize_host(shop)
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max(int(max_retries), 1)
        self._sleep = sleep
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def for_session(cls, session: ShopSession, **kwargs) -> "ShopifyRestClient":
        return cls(session.shop, session.access_token, **kwargs)

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def url_for(self, path: str) -> str:
        return self.base_url + "/" + path.lstrip("/")


    def get(self, path: str, query: Optional[Dict[str, Any]] = None,
            deadline: Optional[float] = None) -> RestResponse:
        return self._request("GET", path, deadline, params=query)

    def post(self, path: str, data: Dict[str, Any],
             deadline: Optional[float] = None) -> RestResponse:
        return self._request("POST", path, deadline, json=data)

    def _request(self, method: str, path: str, deadline: Optional[float],
                 **kwargs) -> RestResponse:
        """deadline is a time.monotonic() timestamp; no call or retry wait runs past it."""
        url = self.url_for(path)
        backoff = 0.5
        attempt = 0
        while True:
            attempt += 1
            timeout = self.timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ShopifyHTTPError(f"{method} {path} deadline exceeded")
                timeout = min(timeout, remaining)

            try:
                r = requests.request(method, url, headers=self._headers,
                                     timeout=timeout, **kwargs)
            except requests.RequestException as e:
                raise ShopifyHTTPError(f"{method} {path} failed: {e}", original_error=e) from e

            if r.status_code in RETRY_STATUSES and attempt < self.max_retries:
                delay = min(_retry_delay(r, backoff), self.timeout)
                if deadline is None or time.monotonic() + delay < deadline:
                    self._sleep(delay)
                    backoff *= 2
                    continue
                raise ShopifyHTTPError(
                    f"{method} {path} HTTP {r.status_code}, retry in {delay:.1f}s would pass the deadline",
                    status=r.status_code, body=r.text[:500])

            if not r.ok:
                raise ShopifyHTTPError(f"{method} {path} HTTP {r.status_code}",
                                       status=r.status_code, body=r.text[:500])
            try:
                body = r.json()
            except ValueError as e:
                raise ShopifyHTTPError(f"{method} {path} returned non-JSON body",
                                       status=r.status_code, body=r.text[:500],
                                       original_error=e) from e
            return RestResponse(body=body, headers=r.headers)
