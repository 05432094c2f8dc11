"""Prompt templates for the Socratic tutor.

This module assembles the single prompt handed to the text generator and
holds the canned replies used when generation fails.
"""

from typing import Any, Optional, Sequence


# =============================================================================
# SYSTEM PROMPTS
# =============================================================================

DEFAULT_SYSTEM_PROMPT = """You are 'AI Professor', a Socratic tutor.
Ask guiding questions that help the student discover the answers by themselves.
Never hand over the final answer directly."""

GUIDANCE_CLAUSE = (
    "The student seems to need more guidance. "
    "Be more specific in your guiding questions."
)


# =============================================================================
# CONVERSATION TEMPLATE
# =============================================================================

CONTEXT_HEADER = "Conversation context:"
NEW_CONVERSATION_LINE = "This is a new conversation."

STUDENT_LABEL = "Student"
TUTOR_LABEL = "Tutor"

STUDENT_DELIMITER = "--- STUDENT MESSAGE ---"
TUTOR_DELIMITER = "--- TUTOR RESPONSE ---"
RESPONSE_INSTRUCTION = "As a specialized tutor, respond following the Socratic method:"

CONTEXT_WINDOW = 6


# =============================================================================
# FALLBACK REPLIES
# =============================================================================

FALLBACK_RESPONSES = {
    "mathematics": (
        "Interesting math question. Before giving you a direct answer, I'd like to "
        "understand what you already know. Could you tell me what you know about this "
        "topic? That will help me guide you towards the solution."
    ),
    "history": (
        "That is an excellent history question. To explore it together, could you tell "
        "me what historical context you already know around it? Then we can work "
        "through the topic step by step."
    ),
    "grammar": (
        "Very good grammar question. To help you discover the answer yourself, could "
        "you give me a few example words or sentences you think are related? We can "
        "analyze the pattern together."
    ),
    "general": (
        "Interesting question. As your tutor, I prefer guiding you towards the answer "
        "instead of giving it to you directly. Could you tell me what you already know "
        "about this topic? Then we can build the knowledge together."
    ),
}


def fallback_reply(subject: Optional[str]) -> str:
    """Deterministic canned reply used when the text generator fails."""
    return FALLBACK_RESPONSES.get(subject or "general", FALLBACK_RESPONSES["general"])


# =============================================================================
# PROMPT ASSEMBLY
# =============================================================================

def _speaker(message: Any) -> str:
    if isinstance(message, dict):
        is_user = message.get("is_user_message", False)
    else:
        is_user = message.is_user_message
    return STUDENT_LABEL if is_user else TUTOR_LABEL


def _content(message: Any) -> str:
    if isinstance(message, dict):
        return str(message.get("content", ""))
    return message.content


def render_transcript(recent_messages: Sequence[Any], window: int = CONTEXT_WINDOW) -> str:
    """Render the last ``window`` messages, oldest first, one line each."""
    if not recent_messages:
        return NEW_CONVERSATION_LINE

    lines = [
        f"{_speaker(message)}: {_content(message).strip()}"
        for message in list(recent_messages)[-window:]
    ]
    return "\n".join(lines)


def build_system_prompt(system_prompt: Optional[str], guidance_needed: bool) -> str:
    prompt = (system_prompt or DEFAULT_SYSTEM_PROMPT).strip()
    if guidance_needed:
        prompt += "\n\n" + GUIDANCE_CLAUSE
    return prompt


def build(
    system_prompt: Optional[str],
    recent_messages: Sequence[Any],
    new_message: str,
    guidance_needed: bool,
    window: int = CONTEXT_WINDOW,
) -> str:
    """Assemble the tutor prompt.

    Args:
        system_prompt: Subject system prompt (default Socratic prompt if None)
        recent_messages: Persisted messages of the session, oldest first
            (ORM rows or dicts with ``content``/``is_user_message``)
        new_message: The student's new message
        guidance_needed: Append the guidance escalation clause

    Returns:
        The final prompt string
    """
    return (
        f"{build_system_prompt(system_prompt, guidance_needed)}\n\n"
        f"{CONTEXT_HEADER}\n"
        f"{render_transcript(recent_messages, window)}\n\n"
        f"{STUDENT_DELIMITER}\n"
        f"{new_message.strip()}\n\n"
        f"{TUTOR_DELIMITER}\n"
        f"{RESPONSE_INSTRUCTION}"
    )
