from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from mintguard.config import RpcEndpointConfig, Settings, settings

logger = logging.getLogger(__name__)

_SECRET_QUERY_KEYS = ("key", "token", "secret", "auth", "password")
_PATH_KEY_RE = re.compile(r"(/v[0-9]+/)[^/]+")


def redact_url(url: str) -> str:
    """
    Mask credentials embedded in an RPC URL before it is logged.

    Covers userinfo (``user:pass@host``), key-like query parameters
    (``?api-key=...``) and provider path keys (``/v2/<key>``).
    """
    parsed = urlparse(url)
    netloc = parsed.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.rsplit("@", 1)[1]

    query = parsed.query
    if query:
        pairs = []
        for name, value in parse_qsl(query, keep_blank_values=True):
            if any(marker in name.lower() for marker in _SECRET_QUERY_KEYS):
                value = "***"
            pairs.append((name, value))
        query = urlencode(pairs, safe="*")

    path = _PATH_KEY_RE.sub(r"\1***", parsed.path)
    return urlunparse((parsed.scheme, netloc, path, parsed.params, query, parsed.fragment))


@dataclass
class RpcEndpointState:
    """
    Runtime state for a Solana RPC endpoint. Priority is fixed at build time;
    liveness metadata is updated by the selector.
    """

    config: RpcEndpointConfig
    last_known_good: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    @property
    def url(self) -> str:
        return self.config.url

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def name(self) -> str:
        return redact_url(self.config.url)

    def record_success(self) -> None:
        self.success_count += 1
        self.consecutive_failures = 0
        self.last_known_good = datetime.now(timezone.utc)
        self.last_error = None

    def record_failure(self, error: str) -> None:
        self.failure_count += 1
        self.consecutive_failures += 1
        self.last_failure = datetime.now(timezone.utc)
        self.last_error = error
        if self.consecutive_failures % 10 == 0:
            logger.info(
                "⚠️ %s successes=%d failures=%d consecutive=%d",
                self.name,
                self.success_count,
                self.failure_count,
                self.consecutive_failures,
            )

    def is_fresh(self, ttl_seconds: float) -> bool:
        """True when a liveness probe succeeded within the TTL window."""
        if ttl_seconds <= 0 or self.last_known_good is None:
            return False
        if self.last_failure and self.last_failure > self.last_known_good:
            return False
        age = (datetime.now(timezone.utc) - self.last_known_good).total_seconds()
        return age < ttl_seconds

    def snapshot(self) -> Dict[str, Any]:
        return {
            "url": self.name,
            "priority": self.priority,
            "enabled": self.config.enabled,
            "last_known_good": self.last_known_good.isoformat() if self.last_known_good else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "successes": self.success_count,
            "failures": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }


def _normalize_url(url: str) -> str:
    return url.strip().rstrip("/")


def build_rpc_endpoints(
    candidates: Optional[Iterable[str]] = None,
    configured_override: Optional[str] = None,
    config: Optional[Settings] = None,
) -> List[RpcEndpointState]:
    """
    Create ranked endpoint state from configuration.

    The override (if any) gets priority 0; candidates follow in list order.
    Duplicates keep their best rank and disabled URLs are dropped.
    """
    config = config or settings
    if candidates is None:
        candidates = config.solana_rpc_urls
        if configured_override is None:
            configured_override = config.solana_rpc_url

    disabled = {_normalize_url(url) for url in config.solana_rpc_disabled}
    ordered: List[str] = []
    if configured_override:
        ordered.append(configured_override)
    ordered.extend(candidates)

    endpoints: List[RpcEndpointState] = []
    seen = set()
    for url in ordered:
        norm_url = _normalize_url(url)
        if not norm_url or norm_url in seen:
            continue
        seen.add(norm_url)
        endpoints.append(
            RpcEndpointState(
                config=RpcEndpointConfig(
                    url=norm_url,
                    priority=len(endpoints),
                    request_timeout=config.rpc_request_timeout,
                    enabled=norm_url not in disabled,
                )
            )
        )

    return [ep for ep in endpoints if ep.config.enabled]
