"""
Shared fakes for the tagger tests.

FakeShopify stands in for ShopifyRestClient: it serves scripted pages for
GET and records every POST, failing or delaying chosen product ids.
"""

import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from shopify_rest import RestResponse
from tagger_config import TaggerConfig
from tagger_errors import ShopifyHTTPError

BASE = "https://test-shop.myshopify.com/admin/api/2024-10"


def link_next(path: str, cursor: str, prev: Optional[str] = None) -> str:
    parts = []
    if prev:
        parts.append(f'<{BASE}{path}?limit=1&page_info={prev}>; rel="previous"')
    parts.append(f'<{BASE}{path}?limit=1&page_info={cursor}>; rel="next"')
    return ", ".join(parts)


def paged_collection(path: str, ids: List[int], per_page: int = 1) -> List[RestResponse]:
    """Pages of products for `ids`, each but the last pointing at the next cursor."""
    chunks = [ids[i:i + per_page] for i in range(0, len(ids), per_page)] or [[]]
    pages = []
    for n, chunk in enumerate(chunks):
        products = [{"id": pid, "title": f"Product {pid}"} for pid in chunk]
        headers: Dict[str, Any] = {}
        if n < len(chunks) - 1:
            headers["Link"] = link_next(path, f"cur{n + 1}", prev=f"cur{n - 1}" if n else None)
        elif n:
            headers["Link"] = f'<{BASE}{path}?limit=1&page_info=cur{n - 1}>; rel="previous"'
        pages.append(RestResponse(body={"products": products}, headers=headers))
    return pages


class FakeShopify:
    def __init__(self, pages: Optional[List[RestResponse]] = None,
                 fail_ids=(), delays: Optional[Dict[Any, float]] = None,
                 get_error_on_call: Optional[int] = None, count: int = 0) -> None:
        self.pages = list(pages or [])
        self.fail_ids = set(fail_ids)
        self.delays = dict(delays or {})
        self.get_error_on_call = get_error_on_call
        self.count = count
        self.get_calls: List[tuple] = []
        self.post_calls: List[tuple] = []
        self.deadlines: List[Optional[float]] = []
        self._lock = threading.Lock()

    def get(self, path: str, query: Optional[Dict[str, Any]] = None,
            deadline: Optional[float] = None) -> RestResponse:
        self.get_calls.append((path, dict(query or {})))
        self.deadlines.append(deadline)
        if path == "/products/count.json":
            return RestResponse(body={"count": self.count}, headers={})
        n = len(self.get_calls)
        if self.get_error_on_call == n:
            raise ShopifyHTTPError(f"GET {path} HTTP 503", status=503)
        if not self.pages:
            raise AssertionError("walker fetched past the last page")
        return self.pages.pop(0)

    def post(self, path: str, data: Dict[str, Any],
             deadline: Optional[float] = None) -> RestResponse:
        pid = int(path.split("/")[2])
        delay = self.delays.get(pid)
        if delay:
            time.sleep(delay)
        with self._lock:
            self.post_calls.append((path, data))
        if pid in self.fail_ids:
            raise ShopifyHTTPError(f"POST {path} HTTP 422", status=422, body="invalid")
        return RestResponse(body={"metafield": dict(data["metafield"], owner_id=pid)}, headers={})


@pytest.fixture
def config() -> TaggerConfig:
    return TaggerConfig(
        admin_host="test-shop.myshopify.com",
        admin_token="shpat_test",
        per_page=1,
        max_in_flight=3,
        request_deadline_sec=0,
    )
