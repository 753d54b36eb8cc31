"""Transaction detail lookup and error/warning analysis"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import redis.asyncio as aioredis

from mintguard.config import settings
from mintguard.errors import TransactionNotFoundError
from mintguard.models.monitoring import TransactionAnalysis
from .datasource.solana import EndpointSelector, SolanaGateway, redact_url

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class TransactionDebugService:
    """
    Fetches confirmed transactions and derives a short diagnostic summary.

    Confirmed transactions are immutable, so details are cached in Redis when
    it is reachable.
    """

    def __init__(
        self,
        selector: EndpointSelector,
        gateway_factory: Optional[Callable[..., Any]] = None,
        fee_warning_lamports: Optional[int] = None,
    ) -> None:
        self._selector = selector
        self._gateway_factory = gateway_factory or SolanaGateway
        self._fee_warning = (
            fee_warning_lamports if fee_warning_lamports is not None else settings.transaction_fee_warning_lamports
        )
        self.redis: Optional[aioredis.Redis] = None

    async def init_redis(self) -> None:
        """Initialize Redis connection"""
        try:
            self.redis = await aioredis.from_url(
                f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}",
                password=settings.redis_password if settings.redis_password else None,
                decode_responses=True,
            )
            logger.info("Redis connection initialized")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Running without cache.")
            self.redis = None

    async def close_redis(self) -> None:
        if self.redis:
            await self.redis.aclose()

    async def _get_cache(self, key: str) -> Optional[str]:
        if not self.redis:
            return None
        try:
            return await self.redis.get(key)
        except Exception as e:
            logger.warning(f"Cache get failed: {e}")
            return None

    async def _set_cache(self, key: str, value: str, ttl: int) -> None:
        if not self.redis:
            return
        try:
            await self.redis.setex(key, ttl, value)
        except Exception as e:
            logger.warning(f"Cache set failed: {e}")

    async def get_transaction_details(self, signature: str) -> Dict[str, Any]:
        """
        Fetch the confirmed transaction for ``signature``.

        Raises:
            AllEndpointsUnreachableError: no RPC endpoint is live
            TransactionNotFoundError: the endpoint has no such transaction
        """
        cache_key = f"tx:{signature}"
        cached = await self._get_cache(cache_key)
        if cached:
            logger.debug("Returning cached transaction details for %s...", signature[:16])
            return json.loads(cached)

        logger.info("Fetching transaction details for %s...", signature[:16])
        async with self._selector.connect() as (client, url):
            gateway = self._gateway_factory(client, None, None)
            details = await gateway.get_transaction(signature)

        if details is None:
            raise TransactionNotFoundError(signature)

        details = {**details, "source": redact_url(url), "retrievedAt": int(time.time() * 1000)}
        await self._set_cache(cache_key, json.dumps(details), settings.cache_ttl_transaction)
        return details

    async def analyze(self, signature: str) -> TransactionAnalysis:
        """Summarize errors, warnings and info for ``signature``. Never raises."""
        logger.info("Analyzing transaction %s...", signature[:16])
        try:
            details = await self.get_transaction_details(signature)
        except Exception as exc:
            logger.error("Transaction analysis failed for %s: %s", signature, exc)
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            return TransactionAnalysis(signature=signature, successful=False, errors=[message])

        meta = details.get("meta") or {}
        err = meta.get("err")
        block_time = details.get("blockTime", details.get("block_time"))

        analysis = TransactionAnalysis(
            signature=signature,
            successful=bool(meta) and err is None,
            timestamp=(
                datetime.fromtimestamp(block_time, tz=timezone.utc).isoformat() if block_time else None
            ),
        )

        if err is not None:
            analysis.errors.append(err if isinstance(err, str) else json.dumps(err))

        fee = meta.get("fee") or 0
        if fee > self._fee_warning:
            analysis.warnings.append(f"High transaction fee: {fee / LAMPORTS_PER_SOL} SOL")

        analysis.info.append(f"Processed in block {details.get('slot')}")
        log_messages = meta.get("logMessages", meta.get("log_messages")) or []
        if log_messages:
            analysis.info.append(f"Transaction generated {len(log_messages)} log messages")

        return analysis
