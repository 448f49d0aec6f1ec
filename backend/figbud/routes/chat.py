"""
Chat endpoint for the AI assistant.

POST /chat/message
Body: {"message": str, "context": {...}?, "systemPrompt": str?}
Headers (optional, override environment keys):
  X-OpenRouter-Key, X-DeepSeek-Key, X-OpenAI-Key

AllProvidersExhausted propagates to the application's exception handler,
which answers 503 with the attempt log.
"""
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from figbud.core.logging import get_logger
from figbud.services.ai.orchestration import get_ai_orchestrator
from figbud.services.ai.schema import AIResponse

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_SYSTEM_PROMPT = (
    "You are FigBud, a friendly Figma design assistant. Help users create "
    "components and learn design best practices. Respond in JSON with the "
    "fields message, componentType, properties, teacherNote and suggestions."
)


class ChatRequest(BaseModel):
    """Chat request body."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str = Field(..., max_length=8000)
    context: Dict[str, Any] = Field(default_factory=dict)
    system_prompt: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value


@router.post("/message", response_model=AIResponse)
async def send_message(
    body: ChatRequest,
    x_openrouter_key: Optional[str] = Header(None),
    x_deepseek_key: Optional[str] = Header(None),
    x_openai_key: Optional[str] = Header(None),
):
    """
    Answer a chat message through the AI orchestration layer.

    Caller-supplied keys take precedence over server environment keys and
    scope the response cache.
    """
    start_time = time.time()
    orchestrator = get_ai_orchestrator().with_credentials({
        "openrouter": x_openrouter_key,
        "deepseek": x_deepseek_key,
        "openai": x_openai_key,
    })

    response = await orchestrator.process_query(
        body.message,
        body.context,
        body.system_prompt or DEFAULT_SYSTEM_PROMPT,
    )

    logger.info(
        "chat_message_completed",
        provider=response.provider,
        from_cache=response.metadata.from_cache,
        latency_ms=int((time.time() - start_time) * 1000),
    )
    return response
