"""
Pydantic models and error types for the AI orchestration layer.

Models:
- ProviderConfig: one upstream backend (identity, cost, priority, timeouts)
- AIQuery: the caller's message, context and system prompt
- AIResponse / AIMetadata / AttemptRecord: normalized result shape
- StructuredComponent / PlainText: tagged union produced by reply parsing

Errors:
- ProviderError and subclasses: per-attempt failures absorbed by strategies
- AllProvidersExhausted: the only error surfaced to callers
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PROVIDER_FAMILIES = ("openrouter", "deepseek", "openai")


class ProviderConfig(BaseModel):
    """
    Static and derived configuration for one upstream backend.

    Every field except ``timeout`` is frozen. ``timeout`` is the adaptive
    per-attempt timeout, tuned by the performance tracker between
    ``timeout_floor`` and ``base_timeout``.
    """

    id: str = Field(..., frozen=True)
    name: str = Field(..., frozen=True)
    family: str = Field(..., frozen=True, description="openrouter | deepseek | openai")
    model: str = Field(..., frozen=True, description="Upstream model identifier")
    base_url: str = Field(..., frozen=True, description="Chat completions endpoint")
    cost_per_1k_tokens: float = Field(0.0, ge=0.0, frozen=True)
    is_free: bool = Field(False, frozen=True)
    priority: int = Field(..., frozen=True, description="Lower value = tried first")
    supports_json_format: bool = Field(
        False,
        frozen=True,
        description="Whether response_format=json_object may be sent",
    )
    base_timeout: float = Field(..., gt=0, frozen=True, description="Configured timeout (seconds)")
    timeout: float = Field(0.0, ge=0, description="Current adaptive timeout (seconds)")

    @field_validator("family")
    @classmethod
    def validate_family(cls, value: str) -> str:
        v = value.lower().strip()
        if v not in PROVIDER_FAMILIES:
            raise ValueError(f"family must be one of {list(PROVIDER_FAMILIES)}")
        return v

    def model_post_init(self, __context: Any) -> None:
        if not self.timeout:
            self.timeout = self.base_timeout


class HistoryTurn(BaseModel):
    """One prior exchange folded into the outgoing prompt."""

    model_config = ConfigDict(extra="ignore")

    message: str = ""
    response: str = ""


class AIQuery(BaseModel):
    """A single process_query call."""

    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    system_prompt: str = ""

    @property
    def history(self) -> List[HistoryTurn]:
        """Prior turns from ``context["history"]``; malformed entries are skipped."""
        raw = self.context.get("history") or []
        if not isinstance(raw, list):
            return []
        turns = []
        for item in raw:
            if isinstance(item, dict):
                turns.append(HistoryTurn.model_validate(item))
        return turns


class AttemptRecord(BaseModel):
    """Diagnostic log entry for one provider attempt."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider_name: str
    success: bool
    error: Optional[str] = None
    latency_ms: Optional[float] = None


class AIMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    component_type: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None
    teacher_note: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    model: str
    is_free: bool
    attempts: Optional[List[AttemptRecord]] = None
    strategy: Optional[str] = None
    from_cache: bool = False
    response_time_ms: Optional[float] = None


class AIResponse(BaseModel):
    """
    Normalized result of an orchestrated query.

    Serialized with camelCase aliases (componentType, teacherNote, isFree,
    tokensUsed) for host applications.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str
    metadata: AIMetadata
    provider: str
    tokens_used: Optional[int] = None
    cost: Optional[float] = None


class StructuredComponent(BaseModel):
    """Reply that parsed as a JSON object."""

    kind: Literal["structured"] = "structured"
    message: str
    component_type: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    teacher_note: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)


class PlainText(BaseModel):
    """Reply that was not JSON; hints recovered by heuristic extraction."""

    kind: Literal["plain_text"] = "plain_text"
    text: str
    component_type: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    teacher_note: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)


ParsedReply = Union[StructuredComponent, PlainText]


class ProviderError(Exception):
    """Base class for a failed attempt against one provider."""

    error_type = "provider_error"

    def __init__(self, provider_id: str, message: str):
        super().__init__(message)
        self.provider_id = provider_id


class ProviderTimeout(ProviderError):
    """The attempt exceeded the provider's current adaptive timeout."""

    error_type = "timeout"

    def __init__(self, provider_id: str, timeout_seconds: float):
        super().__init__(
            provider_id, f"{provider_id} timed out after {timeout_seconds:.2f}s"
        )
        self.timeout_seconds = timeout_seconds


class ProviderNetworkError(ProviderError):
    """Transport failure or unusable HTTP status from the provider."""

    error_type = "network_error"


class ProviderHTTPError(ProviderNetworkError):
    """Upstream answered with a non-2xx status."""

    error_type = "http_error"

    def __init__(self, provider_id: str, status_code: int, body: str = ""):
        super().__init__(provider_id, f"{provider_id} returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body[:500]


class ProviderRateLimited(ProviderHTTPError):
    """HTTP 429; ``reset_at`` is the wall-clock time the limit lifts, when known."""

    error_type = "rate_limited"

    def __init__(self, provider_id: str, body: str = "", reset_at: Optional[float] = None):
        super().__init__(provider_id, 429, body)
        self.reset_at = reset_at


class ProviderBadReply(ProviderNetworkError):
    """A 2xx reply that carries an upstream error or no content."""

    error_type = "bad_reply"


class AllProvidersExhausted(Exception):
    """
    Every candidate provider failed (or none was available).

    Carries the terminal cause and the ordered attempt log for diagnostics.
    """

    def __init__(
        self,
        last_error: Optional[BaseException] = None,
        attempts: Optional[List[AttemptRecord]] = None,
        message: Optional[str] = None,
    ):
        self.last_error = last_error
        self.attempts: List[AttemptRecord] = list(attempts or [])
        if message is None:
            if last_error is not None:
                message = f"All AI providers failed. Last error: {last_error}"
            else:
                message = "No AI providers are available"
        super().__init__(message)
