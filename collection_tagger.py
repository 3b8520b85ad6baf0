#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Shopify collection → product metafield tagger
Backend for an embedded admin app; proxies two calls to the Admin REST API.

Endpoints:
- GET /health
- GET /api/products/count                     → {"count": N}
- GET /api/products/create/<collectionId>     → walk every product page of the
                                                collection, then write
                                                MF_NAMESPACE.MF_KEY = MF_VALUE
                                                on each product
    - 200 "success"              all writes ok
    - 207 {status: partial_failure, failed: [...]}
    - 502 {status: failure, ...} every write failed
    - 502 {error: "could not enumerate products", page: N}
    - ?dry_run=1                 log the writes instead of sending them

Security:
- If API_SHARED_SECRET is set, /api/* requires ?key=... or X-Api-Key.
- Shop comes from ?shop= or X-Shopify-Shop-Domain (default ADMIN_HOST) and
  must have a configured Admin token.

Env you MUST set:
- ADMIN_HOST        e.g. my-store.myshopify.com
- ADMIN_TOKEN       Admin API access token
(everything else: see tagger_config.py)

Start command:
gunicorn -w 2 -t 600 -b 0.0.0.0:$PORT 'collection_tagger:create_app()'
"""

import hmac
import logging
import re
import time
from typing import Any, Callable, Dict, Optional

from flask import Flask, g, jsonify, make_response, request

from link_pagination import PageWalker
from metafield_batch import STATUS_FAILURE, STATUS_SUCCESS, BatchAnnotator, MetafieldSpec
from shopify_rest import ShopifyRestClient, ShopSession, normalize_host
from tagger_config import TaggerConfig, load_config
from tagger_errors import FetchError, ShopifyHTTPError, UnauthorizedShopError

logger = logging.getLogger(__name__)

COLLECTION_ID_RE = re.compile(r"^\d+$")

ClientFactory = Callable[[ShopSession], Any]


def configure_logging(config: TaggerConfig) -> None:
    level = logging.DEBUG if config.debug_verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def resolve_session(config: TaggerConfig, shop_hint: Optional[str]) -> ShopSession:
    shop = normalize_host(shop_hint) or config.admin_host
    token = config.admin_tokens.get(shop)
    if not token:
        raise UnauthorizedShopError(shop)
    return ShopSession(shop=shop, access_token=token)


def key_matches(expected: str, given: str) -> bool:
    if not expected:
        return True
    return hmac.compare_digest(expected.encode("utf-8"), (given or "").encode("utf-8"))


def create_app(config: Optional[TaggerConfig] = None,
               client_factory: Optional[ClientFactory] = None) -> Flask:
    if config is None:
        config = load_config()
        configure_logging(config)

    if client_factory is None:
        def client_factory(session: ShopSession) -> ShopifyRestClient:
            return ShopifyRestClient.for_session(
                session,
                api_version=config.api_version,
                timeout=config.http_timeout_sec,
                max_retries=config.max_retries,
            )

    metafield = MetafieldSpec(config.mf_namespace, config.mf_key, config.mf_value, config.mf_type)

    app = Flask(__name__)

    def _cors(resp):
        resp.headers["Access-Control-Allow-Origin"] = config.cors_allow_origin
        resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Api-Key, X-Shopify-Shop-Domain"
        return resp

    @app.before_request
    def _authenticate():
        if not request.path.startswith("/api/"):
            return None
        if request.method == "OPTIONS":
            return _cors(make_response("", 204))

        key = (request.args.get("key") or request.headers.get("X-Api-Key") or "").strip()
        if not key_matches(config.shared_secret, key):
            logger.warning("[AUTH] 403 key mismatch on %s", request.path)
            return _cors(make_response(("forbidden", 403)))

        shop_hint = request.args.get("shop") or request.headers.get("X-Shopify-Shop-Domain")
        try:
            g.shop_session = resolve_session(config, shop_hint)
        except UnauthorizedShopError as e:
            logger.warning("[AUTH] 401 %s", e)
            return _cors(make_response(jsonify({"error": "unknown shop"}), 401))
        return None

    @app.after_request
    def _api_cors(resp):
        if request.path.startswith("/api/"):
            _cors(resp)
        return resp

    @app.route("/health", methods=["GET"])
    def health():
        return "ok", 200

    @app.route("/api/products/count", methods=["GET"])
    def products_count():
        try:
            client = client_factory(g.shop_session)
            resp = client.get("/products/count.json")
        except ShopifyHTTPError as e:
            logger.warning("[COUNT] %s", e)
            return jsonify({"error": str(e)}), 502
        except Exception:
            logger.exception("[COUNT] failed")
            return jsonify({"error": "Internal server error"}), 500

        count = resp.body.get("count") if isinstance(resp.body, dict) else None
        if not isinstance(count, int) or isinstance(count, bool):
            logger.warning("[COUNT] unexpected payload: %r", resp.body)
            return jsonify({"error": "unexpected product count payload"}), 502
        return jsonify({"count": count}), 200

    @app.route("/api/products/create/<collection_id>", methods=["GET"])
    def products_tag_collection(collection_id: str):
        if not COLLECTION_ID_RE.match(collection_id):
            return jsonify({"error": "collectionId must be numeric"}), 400

        dry_run = config.dry_run or request.args.get("dry_run") in ("1", "true", "True")
        deadline = None
        if config.request_deadline_sec > 0:
            deadline = time.monotonic() + config.request_deadline_sec

        try:
            client = client_factory(g.shop_session)
            path = f"/collections/{collection_id}/products.json"
            walker = PageWalker(client, config.per_page, root_key="products",
                                max_pages=config.max_pages)
            products = walker.walk(path, deadline=deadline)
            logger.info("[TAG] collection %s: %d product(s) to update (dry_run=%s)",
                        collection_id, len(products), dry_run)

            annotator = BatchAnnotator(client, metafield, max_in_flight=config.max_in_flight,
                                       dry_run=dry_run)
            result = annotator.annotate(products, deadline=deadline)
        except FetchError as e:
            logger.error("[TAG] collection %s: %s", collection_id, e)
            return jsonify({
                "error": "could not enumerate products",
                "detail": e.reason,
                "page": e.page,
            }), 502
        except Exception:
            logger.exception("[TAG] collection %s failed", collection_id)
            return jsonify({"error": "Internal server error"}), 500

        if result.status == STATUS_SUCCESS:
            return "success", 200

        body: Dict[str, Any] = dict(result.summary(), collection_id=collection_id)
        code = 502 if result.status == STATUS_FAILURE else 207
        return jsonify(body), code

    return app


if __name__ == "__main__":
    cfg = load_config()
    configure_logging(cfg)
    logger.info("[BOOT] collection tagger on %s | API %s", cfg.admin_host, cfg.api_version)
    logger.info("[CFG] PER_PAGE=%d MAX_IN_FLIGHT=%d MAX_PAGES=%d DRY_RUN=%s",
                cfg.per_page, cfg.max_in_flight, cfg.max_pages, cfg.dry_run)
    create_app(cfg).run(host="0.0.0.0", port=cfg.port)
