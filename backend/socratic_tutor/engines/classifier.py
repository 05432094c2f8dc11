"""Heuristic message classifier.

Tags chat messages with a message type, a coarse difficulty, the subject
concepts they mention and whether the student seems to need guidance. The
rules are keyword and length based, so the same text and vocabulary always
produce the same analysis.

Keyword lists cover English and Spanish, the two languages the catalog ships
prompts for.
"""

from typing import Iterable, List, Literal, Optional, Sequence

from .types import Difficulty, MessageAnalysis, MessageType

Role = Literal["user", "tutor"]

# Length thresholds (characters)
INTERMEDIATE_LENGTH = 50
ADVANCED_LENGTH = 100

QUESTION_MARKS = ("?", "¿")

REASONING_PHRASES = (
    "i think",
    "i believe",
    "in my opinion",
    "my answer is",
    "creo que",
    "pienso que",
    "en mi opinión",
    "mi respuesta es",
)

HELP_PHRASES = (
    "help",
    "i don't understand",
    "i do not understand",
    "i'm stuck",
    "i am stuck",
    "ayuda",
    "no entiendo",
    "estoy atascado",
)

ADVANCED_KEYWORDS = (
    "complex",
    "advanced",
    "prove",
    "derive",
    "complejo",
    "avanzado",
    "demostrar",
    "derivar",
)

ENCOURAGEMENT_KEYWORDS = (
    "excellent",
    "well done",
    "great job",
    "good job",
    "excelente",
    "bien hecho",
    "muy bien",
)

HINT_KEYWORDS = (
    "hint",
    "try",
    "pista",
    "intenta",
)


def _mentions(text: str, phrases: Iterable[str]) -> bool:
    """Case-insensitive substring match, so "helpful" counts as "help"."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in phrases)


def detect_concepts(text: str, vocabulary: Optional[Sequence[str]]) -> List[str]:
    """Return vocabulary terms that appear in the text.

    Case-insensitive substring match, vocabulary order, no duplicates.
    """
    if not vocabulary:
        return []

    lowered = text.lower()
    found: List[str] = []
    for concept in vocabulary:
        if concept and concept not in found and concept.lower() in lowered:
            found.append(concept)
    return found


def _difficulty(text: str) -> Difficulty:
    if len(text) > ADVANCED_LENGTH or _mentions(text, ADVANCED_KEYWORDS):
        return "advanced"
    if len(text) > INTERMEDIATE_LENGTH:
        return "intermediate"
    return "beginner"


def _has_question(text: str) -> bool:
    return any(mark in text for mark in QUESTION_MARKS)


def _user_message_type(text: str) -> MessageType:
    if _has_question(text):
        return "question"
    if _mentions(text, REASONING_PHRASES):
        return "answer"
    return "question"


def _tutor_message_type(text: str) -> MessageType:
    if _has_question(text):
        return "question"
    if _mentions(text, ENCOURAGEMENT_KEYWORDS):
        return "encouragement"
    if _mentions(text, HINT_KEYWORDS):
        return "hint"
    return "explanation"


def classify(
    text: str,
    subject_concepts: Optional[Sequence[str]] = None,
    role: Role = "user",
) -> MessageAnalysis:
    """Classify a chat message.

    Args:
        text: Raw message content
        subject_concepts: Concept vocabulary of the session's subject
        role: "user" for student input, "tutor" for generated replies

    Returns:
        MessageAnalysis with type, difficulty, concepts and guidance flag
    """
    text = text or ""

    if role == "tutor":
        message_type = _tutor_message_type(text)
        needs_guidance = False
    else:
        message_type = _user_message_type(text)
        needs_guidance = message_type == "question" or _mentions(text, HELP_PHRASES)

    return MessageAnalysis(
        message_type=message_type,
        difficulty=_difficulty(text),
        concepts=detect_concepts(text, subject_concepts),
        needs_guidance=needs_guidance,
    )
