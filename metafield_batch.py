"""
One metafield write per product, run on a bounded thread pool.

Outcomes come back in input order whatever order the writes finish in,
and a failed write only marks its own slot.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tagger_errors import TaggerError, WriteError

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial_failure"
STATUS_FAILURE = "failure"

DEADLINE_NOT_SENT = "deadline exceeded (not sent)"
DEADLINE_IN_FLIGHT = "deadline exceeded (write may still complete)"


@dataclass(frozen=True)
class MetafieldSpec:
    namespace: str
    key: str
    value: str
    type: str

    def payload(self) -> Dict[str, Any]:
        return {
            "metafield": {
                "namespace": self.namespace,
                "key": self.key,
                "value": self.value,
                "type": self.type,
            }
        }


@dataclass(frozen=True)
class AnnotationRequest:
    item_id: Any
    title: str
    metafield: MetafieldSpec

    @property
    def path(self) -> str:
        return f"/products/{self.item_id}/metafields.json"


@dataclass
class AnnotationOutcome:
    item_id: Any
    title: str
    ok: bool
    response: Any = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    outcomes: List[AnnotationOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[AnnotationOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[AnnotationOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def status(self) -> str:
        n_failed = len(self.failed)
        if n_failed == 0:
            return STATUS_SUCCESS
        if n_failed == len(self.outcomes):
            return STATUS_FAILURE
        return STATUS_PARTIAL

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "total": len(self.outcomes),
            "succeeded": [o.item_id for o in self.succeeded],
            "failed": [{"id": o.item_id, "title": o.title, "error": o.error} for o in self.failed],
        }


def build_requests(items: List[Dict[str, Any]], metafield: MetafieldSpec) -> List[AnnotationRequest]:
    """Exactly one request per item, same order."""
    return [
        AnnotationRequest(item_id=(it or {}).get("id"), title=(it or {}).get("title") or "",
                          metafield=metafield)
        for it in items
    ]


class BatchAnnotator:
    def __init__(self, client, metafield: MetafieldSpec, max_in_flight: int = 4,
                 dry_run: bool = False) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.client = client
        self.metafield = metafield
        self.max_in_flight = max_in_flight
        self.dry_run = dry_run

    def _write(self, req: AnnotationRequest, deadline: Optional[float] = None) -> Any:
        if req.item_id is None:
            raise WriteError(None, "item has no id")
        try:
            resp = self.client.post(req.path, req.metafield.payload(), deadline=deadline)
        except TaggerError as e:
            raise WriteError(req.item_id, str(e), original_error=e) from e
        logger.debug("[WRITE] %s %s.%s=%s | %s", req.item_id, req.metafield.namespace,
                     req.metafield.key, req.metafield.value, req.title)
        return resp.body

    def annotate(self, items: List[Dict[str, Any]], deadline: Optional[float] = None) -> BatchResult:
        reqs = build_requests(items, self.metafield)
        outcomes: List[Optional[AnnotationOutcome]] = [None] * len(reqs)

        if self.dry_run:
            for i, req in enumerate(reqs):
                logger.info("[DRY] POST %s → %s.%s=%s", req.path, req.metafield.namespace,
                            req.metafield.key, req.metafield.value)
                outcomes[i] = AnnotationOutcome(req.item_id, req.title, ok=req.item_id is not None,
                                                error=None if req.item_id is not None else "item has no id")
            return BatchResult(outcomes)

        if not reqs:
            return BatchResult([])

        pool = ThreadPoolExecutor(max_workers=self.max_in_flight, thread_name_prefix="mf-write")
        try:
            pending = {pool.submit(self._write, req, deadline): i for i, req in enumerate(reqs)}
            while pending:
                timeout = None
                if deadline is not None:
                    timeout = max(deadline - time.monotonic(), 0.0)
                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                if not done:
                    break
                for fut in done:
                    i = pending.pop(fut)
                    outcomes[i] = self._outcome(reqs[i], fut)

            for fut, i in pending.items():
                # a started write cannot be stopped and may still land upstream
                error = DEADLINE_NOT_SENT if fut.cancel() else DEADLINE_IN_FLIGHT
                logger.warning("[WRITE] %s abandoned: %s", reqs[i].item_id, error)
                outcomes[i] = AnnotationOutcome(reqs[i].item_id, reqs[i].title, ok=False,
                                                error=error)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        result = BatchResult(outcomes)
        logger.info("[BATCH] %d write(s): %d ok, %d failed → %s", len(result.outcomes),
                    len(result.succeeded), len(result.failed), result.status)
        return result

    def _outcome(self, req: AnnotationRequest, fut) -> AnnotationOutcome:
        try:
            body = fut.result()
        except WriteError as e:
            logger.warning("[WRITE] %s", e)
            return AnnotationOutcome(req.item_id, req.title, ok=False, error=e.reason)
        except Exception as e:
            logger.exception("[WRITE] unexpected error for %s", req.item_id)
            return AnnotationOutcome(req.item_id, req.title, ok=False, error=f"{type(e).__name__}: {e}")
        return AnnotationOutcome(req.item_id, req.title, ok=True, response=body)
