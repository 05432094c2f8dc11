"""LLM client for tutor replies.

Provides the ChatOpenAI factory and the TextGenerator used by the session
engine, in buffered (``ainvoke``) and streaming (``astream``) modes.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_openai import ChatOpenAI

from ..core.config import Settings, get_settings
from ..core.errors import GenerationFailure
from ..engines.types import Attachment
from ..observability.langsmith import build_trace_config

logger = logging.getLogger(__name__)


def _resolve_api_key(base_url: str, api_key: str) -> str:
    """Provide a safe API key value for local OpenAI-compatible servers."""
    if api_key:
        return api_key
    base = (base_url or "").lower()
    if "127.0.0.1" in base or "localhost" in base:
        return "lm-studio"
    return ""


def get_llm(
    temperature: Optional[float] = None,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    streaming: bool = False,
    settings: Optional[Settings] = None,
) -> ChatOpenAI:
    """
    Get a configured chat model client.

    Args:
        temperature: Override default temperature (0.0-1.0)
        model: Override default model name
        max_tokens: Override default max tokens
        streaming: Enable streaming responses

    Returns:
        Configured ChatOpenAI instance
    """
    settings = settings or get_settings()

    return ChatOpenAI(
        base_url=settings.LLM_BASE_URL,
        api_key=_resolve_api_key(settings.LLM_BASE_URL, settings.LLM_API_KEY),
        model=model or settings.LLM_MODEL,
        temperature=temperature if temperature is not None else settings.LLM_TEMPERATURE,
        max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT,
        streaming=streaming,
    )


def _chunk_text(content: Any) -> str:
    """Flatten a message/chunk content (string or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


def build_messages(prompt: str, attachments: Optional[Sequence[Attachment]] = None) -> List[BaseMessage]:
    """Single human turn; images go along as data-URI content parts."""
    images = [item for item in (attachments or []) if item.is_image]
    if not images:
        return [HumanMessage(content=prompt)]

    content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in images:
        content.append({
            "type": "image_url",
            "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
        })
    return [HumanMessage(content=content)]


class TextGenerator:
    """Generates tutor replies. Failures surface as GenerationFailure."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._llm: Optional[ChatOpenAI] = None

    @property
    def llm(self) -> ChatOpenAI:
        if self._llm is None:
            self._llm = get_llm(settings=self._settings)
        return self._llm

    def _config(self, mode: str) -> Dict[str, Any]:
        return build_trace_config(mode, model=self._settings.LLM_MODEL)

    async def generate(self, prompt: str, attachments: Optional[Sequence[Attachment]] = None) -> str:
        """Buffered generation of a complete reply."""
        try:
            response = await self.llm.ainvoke(
                build_messages(prompt, attachments),
                config=self._config("buffered"),
            )
        except Exception as e:
            logger.error(f"LLM invocation failed: {e}")
            raise GenerationFailure(str(e)) from e

        text = _chunk_text(response.content if isinstance(response, AIMessage) else response).strip()
        if not text:
            raise GenerationFailure("Empty response from text generator")
        return text

    async def generate_stream(
        self,
        prompt: str,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> AsyncIterator[str]:
        """Yield reply chunks as they arrive; exhaustion ends the reply."""
        try:
            async for chunk in self.llm.astream(
                build_messages(prompt, attachments),
                config=self._config("stream"),
            ):
                text = _chunk_text(getattr(chunk, "content", chunk))
                if text:
                    yield text
        except Exception as e:
            logger.error(f"LLM stream failed: {e}")
            raise GenerationFailure(str(e)) from e
