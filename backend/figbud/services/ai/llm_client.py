"""
Query executor: one provider, one attempt.

Builds the OpenAI-compatible chat-completions payload for a provider,
issues the HTTP call with httpx bounded by the provider's current adaptive
timeout and guarded by a cancellation token, then normalizes the reply into
an AIResponse.

Errors raised:
- ProviderTimeout: attempt exceeded provider.timeout
- ProviderNetworkError / ProviderHTTPError: transport failure or non-2xx
- ProviderRateLimited: HTTP 429
- ProviderBadReply: a 2xx JSON body carrying an upstream error or no content
- RequestCancelled: the attempt's token was cancelled (not a provider fault)

A 2xx body that is not JSON is recovered from the raw text. Rate-limit
headers on every response are reported to the shared RateLimitTracker.
"""
import asyncio
import json
import time
from typing import Any, Dict, Optional

import httpx

from figbud.core.cancellation import CancellationToken
from figbud.core.config import AISettings
from figbud.core.logging import get_logger
from figbud.core.metrics import record_malformed_response, record_tokens_and_cost
from figbud.services.ai.providers import ProviderCandidate
from figbud.services.ai.rate_limits import RateLimitTracker
from figbud.services.ai.response_parser import parse_reply
from figbud.services.ai.schema import (
    AIMetadata,
    AIQuery,
    AIResponse,
    PlainText,
    ProviderBadReply,
    ProviderConfig,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderTimeout,
    StructuredComponent,
)

logger = get_logger(__name__)


def build_prompt(query: AIQuery) -> str:
    """Fold history, the current message and optional hints into one prompt."""
    history = query.history
    prompt = ""
    if history:
        prompt += "Previous conversation:\n"
        for turn in history:
            prompt += f"User: {turn.message}\n"
            prompt += f"Assistant: {turn.response}\n"
        prompt += "\n---\n\n"

    prompt += f"Current message: {query.message}"

    selection = query.context.get("selection")
    if selection:
        prompt += f"\n\nCurrent selection: {json.dumps(selection, default=str)}"

    component_type = query.context.get("componentType")
    if component_type:
        prompt += f"\n\nRequested component type: {component_type}"

    if history:
        prompt += (
            "\n\nPlease consider the conversation history above when responding. "
            "Maintain context and refer to previous messages when relevant."
        )
    return prompt


def _error_message(data: Dict[str, Any]) -> str:
    error = data["error"]
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return str(error)


def _first_content(data: Any) -> Optional[str]:
    """Pull reply text out of the known response shapes."""
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
    for key in ("message", "content", "text"):
        if isinstance(data.get(key), str):
            return data[key]
    return None


class QueryExecutor:
    """
    Executes a single attempt against one provider.

    Args:
        settings: Sampling parameters and attribution headers
        transport: Optional httpx transport (tests use httpx.MockTransport)
        rate_limits: Tracker fed from response headers (shared with the registry)
    """

    def __init__(
        self,
        settings: Optional[AISettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limits: Optional[RateLimitTracker] = None,
    ):
        self.settings = settings or AISettings()
        self._transport = transport
        self.rate_limits = rate_limits if rate_limits is not None else RateLimitTracker()

    def build_payload(self, provider: ProviderConfig, query: AIQuery) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": query.system_prompt},
                {"role": "user", "content": build_prompt(query)},
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        if provider.supports_json_format:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def build_headers(self, provider: ProviderConfig, api_key: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if provider.family == "openrouter":
            headers["HTTP-Referer"] = self.settings.http_referer
            headers["X-Title"] = self.settings.app_title
        return headers

    async def _post(
        self, provider: ProviderConfig, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=provider.timeout
        ) as client:
            return await client.post(provider.base_url, headers=headers, json=payload)

    async def execute(
        self,
        candidate: ProviderCandidate,
        query: AIQuery,
        token: Optional[CancellationToken] = None,
    ) -> AIResponse:
        """
        Call one provider and normalize its reply.

        Raises:
            ProviderTimeout, ProviderNetworkError, ProviderBadReply, RequestCancelled
        """
        provider = candidate.provider
        token = token or CancellationToken()
        token.raise_if_cancelled()

        payload = self.build_payload(provider, query)
        headers = self.build_headers(provider, candidate.api_key)
        timeout = provider.timeout

        start = time.perf_counter()
        try:
            response = await token.guard(
                asyncio.wait_for(self._post(provider, headers, payload), timeout=timeout)
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning(
                "ai_provider_timeout",
                provider=provider.id,
                timeout=timeout,
                error_type=type(exc).__name__,
            )
            raise ProviderTimeout(provider.id, timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "ai_provider_http_error",
                provider=provider.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ProviderNetworkError(provider.id, f"{provider.id}: {exc}") from exc

        duration_ms = (time.perf_counter() - start) * 1000.0
        window = self.rate_limits.observe(provider.id, response.headers, response.status_code)

        if response.status_code == 429:
            logger.warning(
                "ai_provider_rate_limited",
                provider=provider.id,
                reset_at=window.reset_at if window else None,
                duration_ms=duration_ms,
            )
            raise ProviderRateLimited(
                provider.id, response.text, reset_at=window.reset_at if window else None
            )

        if response.status_code >= 400:
            logger.warning(
                "ai_provider_bad_status",
                provider=provider.id,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            raise ProviderHTTPError(provider.id, response.status_code, response.text)

        return self._normalize(provider, response, duration_ms)

    def _normalize(
        self, provider: ProviderConfig, response: httpx.Response, duration_ms: float
    ) -> AIResponse:
        try:
            data: Any = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("error"):
            logger.warning(
                "ai_provider_error_body",
                provider=provider.id,
                body_preview=response.text[:200],
            )
            raise ProviderBadReply(
                provider.id, f"{provider.id} returned an error: {_error_message(data)}"
            )

        content = _first_content(data)
        if data is None:
            # Not JSON: recover from the raw text.
            logger.warning(
                "ai_provider_malformed_response",
                provider=provider.id,
                body_preview=response.text[:200],
            )
            content = response.text
        if content is None or not content.strip():
            logger.warning(
                "ai_provider_empty_reply",
                provider=provider.id,
                body_preview=response.text[:200],
            )
            raise ProviderBadReply(provider.id, f"{provider.id} returned no content")

        parsed = parse_reply(content)
        if isinstance(parsed, PlainText):
            record_malformed_response(provider.id)

        usage = data.get("usage") if isinstance(data, dict) else None
        tokens_used = None
        if isinstance(usage, dict) and usage.get("total_tokens") is not None:
            try:
                tokens_used = int(usage["total_tokens"])
            except (TypeError, ValueError):
                tokens_used = None
        cost = (tokens_used or 0) * provider.cost_per_1k_tokens / 1000.0
        record_tokens_and_cost(provider.id, tokens_used or 0, cost)

        if isinstance(parsed, StructuredComponent):
            text = parsed.message
            properties = parsed.properties
        else:
            text = parsed.text
            properties = parsed.properties or None

        logger.info(
            "ai_provider_response",
            provider=provider.id,
            model=provider.model,
            reply_kind=parsed.kind,
            tokens_used=tokens_used,
            duration_ms=duration_ms,
        )

        return AIResponse(
            text=text,
            metadata=AIMetadata(
                component_type=parsed.component_type,
                properties=properties,
                teacher_note=parsed.teacher_note,
                suggestions=parsed.suggestions,
                model=provider.model,
                is_free=provider.is_free,
            ),
            provider=provider.id,
            tokens_used=tokens_used,
            cost=cost,
        )
