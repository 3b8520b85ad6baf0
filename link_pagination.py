"""
Cursor pagination over Admin REST collections.

Shopify REST paginates with a Link header:

    <https://shop/admin/api/2024-10/products.json?limit=50&page_info=abc>; rel="previous",
    <https://shop/admin/api/2024-10/products.json?limit=50&page_info=xyz>; rel="next"

The page_info token is opaque: we pass it back exactly as received.
The last page simply has no rel="next" directive.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from shopify_rest import header_value
from tagger_errors import FetchError, PageLimitExceeded, ShopifyHTTPError

logger = logging.getLogger(__name__)

REL_NEXT = 'rel="next"'
PAGE_INFO_RE = re.compile(r"page_info=([^&>]+)")

LinkHeader = Union[None, str, Sequence[str]]


def split_link_header(link_header: LinkHeader) -> List[str]:
    """Directive strings of a Link header; only a single string gets split on ','."""
    if not link_header:
        return []
    if isinstance(link_header, str):
        return link_header.split(",")
    return list(link_header)


def extract_page_info(link_header: LinkHeader) -> Optional[str]:
    """Return the page_info of the rel="next" directive, or None."""
    for directive in split_link_header(link_header):
        if REL_NEXT not in directive:
            continue
        m = PAGE_INFO_RE.search(directive)
        if m:
            return m.group(1)
    return None


def has_next_directive(link_header: LinkHeader) -> bool:
    return any(REL_NEXT in d for d in split_link_header(link_header))


class PageWalker:
    """
    Fetch every page of a collection endpoint, in order.

    Terminates only when a page carries no next cursor. max_pages > 0 turns
    on a circuit breaker that raises PageLimitExceeded instead of silently
    returning a truncated list.
    """

    def __init__(self, client, page_size: int, root_key: str = "products",
                 max_pages: int = 0) -> None:
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")
        self.client = client
        self.page_size = page_size
        self.root_key = root_key
        self.max_pages = max_pages

    def walk(self, path: str, deadline: Optional[float] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        query: Dict[str, Any] = {"limit": self.page_size}
        page = 0

        while True:
            page += 1
            if deadline is not None and time.monotonic() >= deadline:
                raise FetchError(page, path, "deadline exceeded")

            logger.debug("[PAGE %d] GET %s %s", page, path, query)
            try:
                resp = self.client.get(path, query, deadline=deadline)
            except ShopifyHTTPError as e:
                logger.warning("[PAGE %d] fetch failed for %s: %s", page, path, e)
                raise FetchError(page, path, str(e), original_error=e) from e

            body = resp.body if isinstance(resp.body, dict) else {}
            page_items = body.get(self.root_key)
            if not isinstance(page_items, list):
                raise FetchError(page, path, f"response has no '{self.root_key}' list")
            items.extend(page_items)
            logger.info("[PAGE %d] %s: %d item(s), %d so far",
                        page, path, len(page_items), len(items))

            link = header_value(resp.headers, "Link")
            cursor = extract_page_info(link)
            if cursor is None:
                if has_next_directive(link):
                    logger.warning("[PAGE %d] Link header has rel=\"next\" but no page_info; "
                                   "treating as last page: %r", page, link)
                break

            if self.max_pages and page >= self.max_pages:
                logger.error("[PAGE %d] MAX_PAGES=%d reached on %s with more pages pending; "
                             "aborting instead of truncating", page, self.max_pages, path)
                raise PageLimitExceeded(page, path, self.max_pages)

            query = {"limit": self.page_size, "page_info": cursor}

        return items
