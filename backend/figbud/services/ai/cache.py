"""
Response cache for orchestrated AI queries.

Keys are a SHA-256 over the normalized message, the stable part of the
context, the system prompt and the caller's credential scope. Volatile
context fields (timestamps, request/trace ids, nonces) are dropped and
history turns are reduced to ``{message, response}`` so semantically
identical repeat queries hit.

Cache key format: sha256 hex of the canonical JSON payload.
TTL: 1 hour by default (AI_CACHE_TTL_SECONDS); LRU capacity 500 entries.
"""
import hashlib
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from figbud.core.cache import TTLCache, hash_payload
from figbud.core.logging import get_logger
from figbud.core.metrics import record_cache_hit, record_cache_miss
from figbud.services.ai.schema import AIResponse

logger = get_logger(__name__)

CACHE_TYPE = "ai_response"

VOLATILE_CONTEXT_FIELDS = frozenset({
    "timestamp",
    "created_at",
    "updated_at",
    "request_id",
    "requestId",
    "trace_id",
    "traceId",
    "id",
    "nonce",
})

_WHITESPACE = re.compile(r"\s+")


def normalize_message(message: str) -> str:
    return _WHITESPACE.sub(" ", message.strip().lower())


def _stable(value: Any) -> Any:
    """Recursively drop volatile keys from dicts."""
    if isinstance(value, Mapping):
        return {
            k: _stable(v)
            for k, v in value.items()
            if k not in VOLATILE_CONTEXT_FIELDS
        }
    if isinstance(value, (list, tuple)):
        return [_stable(v) for v in value]
    return value


def stable_context(context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Context with volatile fields removed and history reduced to turn text."""
    context = dict(context or {})
    history = context.pop("history", None)
    stable = _stable(context)
    if isinstance(history, list) and history:
        stable["history"] = [
            {"message": turn.get("message"), "response": turn.get("response")}
            for turn in history
            if isinstance(turn, Mapping)
        ]
    return stable


def credential_scope(credentials: Mapping[str, str]) -> List[Tuple[str, str]]:
    """Sorted (family, key fingerprint) pairs; raw keys never enter the cache key."""
    return sorted(
        (family, hashlib.sha256(key.encode("utf-8")).hexdigest()[:16])
        for family, key in credentials.items()
        if key
    )


def build_cache_key(
    message: str,
    context: Optional[Mapping[str, Any]],
    system_prompt: str,
    credentials: Optional[Mapping[str, str]] = None,
) -> str:
    payload = {
        "message": normalize_message(message),
        "context": stable_context(context),
        "system_prompt": system_prompt or "",
        "credentials": credential_scope(credentials or {}),
    }
    return hash_payload(payload)


class ResponseCache:
    """AIResponse cache on top of the shared TTL/LRU store."""

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 3600.0,
        store: Optional[TTLCache] = None,
    ):
        self._store: TTLCache[AIResponse] = store or TTLCache(
            max_entries=max_entries, default_ttl_seconds=ttl_seconds
        )

    def get(self, key: str) -> Optional[AIResponse]:
        """Cached response flagged from_cache, or None."""
        cached = self._store.get(key)
        if cached is None:
            record_cache_miss(CACHE_TYPE)
            logger.debug("ai_cache_miss", cache_key=key[:12])
            return None
        record_cache_hit(CACHE_TYPE)
        logger.info("ai_cache_hit", cache_key=key[:12], provider=cached.provider)
        response = cached.model_copy(deep=True)
        response.metadata.from_cache = True
        return response

    def set(self, key: str, response: AIResponse, ttl_seconds: Optional[float] = None) -> None:
        stored = response.model_copy(deep=True)
        stored.metadata.from_cache = False
        self._store.set(key, stored, ttl_seconds=ttl_seconds)
        logger.debug("ai_cache_set", cache_key=key[:12], provider=response.provider)

    def delete(self, key: str) -> bool:
        return self._store.delete(key)

    def clear(self) -> None:
        self._store.clear()

    def purge_expired(self) -> int:
        return self._store.purge_expired()

    def stats(self) -> Dict[str, Any]:
        return self._store.stats()

    def __len__(self) -> int:
        return len(self._store)
