"""Text generation over an OpenAI-compatible chat model."""

from .client import TextGenerator, get_llm

__all__ = ["TextGenerator", "get_llm"]
