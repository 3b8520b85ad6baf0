from typing import Any, Optional


class TaggerError(Exception):
    """Base exception for the collection tagger."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ShopifyHTTPError(TaggerError):
    """An Admin API call failed. status is None for network errors and timeouts."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "",
                 original_error: Optional[Exception] = None) -> None:
        super().__init__(message, original_error)
        self.status = status
        self.body = body


class FetchError(TaggerError):
    """A page fetch failed; the walk cannot continue without the full collection."""

    def __init__(self, page: int, path: str, reason: str,
                 original_error: Optional[Exception] = None) -> None:
        super().__init__(f"pagination failed at page {page}: {reason}", original_error)
        self.page = page
        self.path = path
        self.reason = reason


class PageLimitExceeded(FetchError):
    """MAX_PAGES circuit breaker tripped while the upstream still had pages."""

    def __init__(self, page: int, path: str, max_pages: int) -> None:
        super().__init__(page, path, f"page limit {max_pages} reached with more pages pending")
        self.max_pages = max_pages


class WriteError(TaggerError):
    """One metafield write failed. Recorded per item, never raised out of a batch."""

    def __init__(self, item_id: Any, reason: str,
                 original_error: Optional[Exception] = None) -> None:
        super().__init__(f"write failed for {item_id}: {reason}", original_error)
        self.item_id = item_id
        self.reason = reason


class UnauthorizedShopError(TaggerError):
    """Request names a shop we hold no Admin token for."""

    def __init__(self, shop: str) -> None:
        super().__init__(f"no admin token configured for shop '{shop}'")
        self.shop = shop
