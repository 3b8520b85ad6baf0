"""
Environment config for the collection tagger.

Everything is read once into a frozen TaggerConfig; nothing here is
mutated after startup.
"""

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from shopify_rest import normalize_host

# =========================
# Defaults
# =========================
DEFAULT_API_VERSION = "2024-10"
DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 250                      # Admin REST hard limit

MF_NAMESPACE = "custom"
MF_KEY = "demo_counter"
MF_VALUE = "1"
MF_TYPE = "number_integer"


@dataclass(frozen=True)
class TaggerConfig:
    admin_host: str
    admin_token: str
    api_version: str = DEFAULT_API_VERSION
    shared_secret: str = ""
    per_page: int = DEFAULT_PER_PAGE
    max_pages: int = 0                  # 0 = no ceiling
    max_in_flight: int = 4
    http_timeout_sec: float = 25.0
    max_retries: int = 3
    request_deadline_sec: float = 120.0  # 0 = no deadline
    mf_namespace: str = MF_NAMESPACE
    mf_key: str = MF_KEY
    mf_value: str = MF_VALUE
    mf_type: str = MF_TYPE
    dry_run: bool = False
    debug_verbose: bool = False
    cors_allow_origin: str = "*"
    port: int = 5050

    @property
    def admin_tokens(self) -> Dict[str, str]:
        return {self.admin_host: self.admin_token}


def _get(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0,
         maximum: Optional[int] = None) -> int:
    raw = _get(env, name, str(default))
    try:
        val = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r})")
    if val < minimum or (maximum is not None and val > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise RuntimeError(f"{name} must be {bounds} (got {val})")
    return val


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name, str(default))
    try:
        val = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number (got {raw!r})")
    if val < 0:
        raise RuntimeError(f"{name} must be >= 0 (got {val})")
    return val


def _flag(env: Mapping[str, str], name: str, default: str = "0") -> bool:
    return _get(env, name, default).lower() in ("1", "true", "yes")


def load_config(environ: Optional[Mapping[str, str]] = None) -> TaggerConfig:
    env = os.environ if environ is None else environ

    admin_host = normalize_host(_get(env, "ADMIN_HOST"))
    if not admin_host:
        raise RuntimeError("ADMIN_HOST env var is required")
    admin_token = _get(env, "ADMIN_TOKEN")
    if not admin_token:
        raise RuntimeError("ADMIN_TOKEN env var is required")

    return TaggerConfig(
        admin_host=admin_host,
        admin_token=admin_token,
        api_version=_get(env, "ADMIN_API_VERSION", DEFAULT_API_VERSION),
        shared_secret=_get(env, "API_SHARED_SECRET"),
        per_page=_int(env, "PER_PAGE", DEFAULT_PER_PAGE, minimum=1, maximum=MAX_PER_PAGE),
        max_pages=_int(env, "MAX_PAGES", 0),
        max_in_flight=_int(env, "MAX_IN_FLIGHT", 4, minimum=1),
        http_timeout_sec=_float(env, "HTTP_TIMEOUT_SEC", 25.0),
        max_retries=_int(env, "MAX_RETRIES", 3, minimum=1),
        request_deadline_sec=_float(env, "REQUEST_DEADLINE_SEC", 120.0),
        mf_namespace=_get(env, "MF_NAMESPACE", MF_NAMESPACE),
        mf_key=_get(env, "MF_KEY", MF_KEY),
        mf_value=_get(env, "MF_VALUE", MF_VALUE),
        mf_type=_get(env, "MF_TYPE", MF_TYPE),
        dry_run=_flag(env, "DRY_RUN"),
        debug_verbose=_flag(env, "DEBUG_VERBOSE"),
        cors_allow_origin=_get(env, "CORS_ALLOW_ORIGIN", "*"),
        port=_int(env, "PORT", 5050, minimum=1),
    )
