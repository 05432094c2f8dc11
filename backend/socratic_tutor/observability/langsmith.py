"""LangSmith tracing for tutor generations.

LangChain picks tracing up from the process environment, so startup exports
the configured values once. Each generation call then carries a runnable
config naming the run and tagging it with the reply mode.
"""

import logging
import os
from typing import Any, Dict, Iterable, Optional

from ..core.config import Settings

logger = logging.getLogger(__name__)

# Setting name -> environment variables that LangChain/LangSmith read
_ENV_NAMES = {
    "LANGSMITH_API_KEY": ("LANGSMITH_API_KEY", "LANGCHAIN_API_KEY"),
    "LANGSMITH_ENDPOINT": ("LANGSMITH_ENDPOINT", "LANGCHAIN_ENDPOINT"),
    "LANGSMITH_PROJECT": ("LANGSMITH_PROJECT", "LANGCHAIN_PROJECT"),
}


def tracing_env(settings: Settings) -> Dict[str, str]:
    """Environment values for the given settings.

    Tracing is only switched on when an API key is configured.
    """
    enabled = bool(settings.LANGSMITH_TRACING) and bool(settings.LANGSMITH_API_KEY.strip())
    env = {
        "LANGSMITH_TRACING": "true" if enabled else "false",
        "LANGCHAIN_TRACING_V2": "true" if enabled else "false",
    }
    for setting, names in _ENV_NAMES.items():
        value = getattr(settings, setting)
        if value:
            env.update({name: value for name in names})
    return env


def initialize_langsmith(settings: Settings) -> bool:
    """Export tracing settings to the environment. Returns True if tracing is on."""
    env = tracing_env(settings)
    os.environ.update(env)

    enabled = env["LANGSMITH_TRACING"] == "true"
    if enabled:
        logger.info(f"LangSmith tracing enabled (project={settings.LANGSMITH_PROJECT})")
    elif settings.LANGSMITH_TRACING:
        logger.warning("LangSmith tracing requested but LANGSMITH_API_KEY is empty")
    else:
        logger.debug("LangSmith tracing disabled")
    return enabled


def build_trace_config(
    mode: str,
    model: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Runnable config for one generation call (``mode`` is buffered or stream)."""
    run_metadata: Dict[str, Any] = {"mode": mode}
    if model:
        run_metadata["model"] = model
    run_metadata.update(metadata or {})

    return {
        "run_name": f"tutor-reply-{mode}",
        "tags": ["tutor", mode, *(tags or [])],
        "metadata": run_metadata,
    }
