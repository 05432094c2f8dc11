"""Typed structures shared by the engines.

JSON columns (message analysis, module content, module progress, goal
milestones) are always read and written through these models.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MessageType = Literal["question", "answer", "explanation", "hint", "encouragement"]
Difficulty = Literal["beginner", "intermediate", "advanced"]
SkillLevel = Literal["beginner", "intermediate", "advanced", "expert"]
ModuleType = Literal["lesson", "practice", "quiz", "discussion", "project"]
ModuleContentType = Literal["text", "conversation", "quiz", "interactive"]
ModuleStatus = Literal["locked", "available", "in_progress", "completed", "failed"]
PathStatus = Literal["not_started", "in_progress", "completed", "paused"]
ResourceType = Literal["link", "document", "video", "image"]
GoalStatus = Literal["active", "paused", "completed", "expired", "cancelled"]
GoalPriority = Literal["low", "medium", "high", "critical"]
GoalType = Literal[
    "daily_sessions",
    "weekly_sessions",
    "monthly_sessions",
    "total_messages",
    "concepts_learned",
    "study_time",
    "streak_days",
    "skill_level",
    "subject_mastery",
    "custom",
]


# =============================================================================
# Chat
# =============================================================================

class MessageAnalysis(BaseModel):
    """Classifier output stored alongside every chat message."""

    message_type: MessageType
    difficulty: Difficulty
    concepts: List[str] = Field(default_factory=list)
    needs_guidance: bool = False
    interrupted: bool = False


class Attachment(BaseModel):
    """Binary attachment forwarded to the text generator (base64 payload)."""

    mime_type: str
    data: str
    name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class XpAwardResult:
    previous_xp: int
    current_xp: int
    previous_level: int
    current_level: int
    leveled_up: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_xp": self.previous_xp,
            "current_xp": self.current_xp,
            "previous_level": self.previous_level,
            "current_level": self.current_level,
            "leveled_up": self.leveled_up,
        }


@dataclass
class ExchangeResult:
    """Both persisted sides of one tutoring exchange."""

    user_message: Any
    assistant_message: Any
    xp_awarded: Optional[XpAwardResult] = None
    fallback_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_message": self.user_message.to_dict(),
            "assistant_message": self.assistant_message.to_dict(),
            "xp_awarded": self.xp_awarded.to_dict() if self.xp_awarded else None,
        }


StreamEventKind = Literal["user_message", "chunk", "done", "error"]


@dataclass
class StreamEvent:
    """One item of a streamed exchange.

    A stream is `user_message`, any number of `chunk`, then exactly one
    terminal `done` or `error`.
    """

    event: StreamEventKind
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in ("done", "error")


# =============================================================================
# Learning paths
# =============================================================================

class Resource(BaseModel):
    id: str
    title: str
    type: ResourceType
    url: str
    description: Optional[str] = None


class ModuleContent(BaseModel):
    """Content payload of a learning module."""

    type: ModuleContentType = "text"
    title: str
    description: str = ""
    instructions: Optional[str] = None
    prompts: Optional[List[str]] = None
    resources: Optional[List[Resource]] = None

    @classmethod
    def from_stored(
        cls,
        value: Optional[Dict[str, Any]],
        title: str,
        description: Optional[str],
    ) -> "ModuleContent":
        """Parse a stored payload, defaulting to a plain text module."""
        if not value:
            return cls(type="text", title=title, description=description or "")
        return cls.model_validate(value)


class ModuleProgress(BaseModel):
    """Per-user state of one module inside an enrollment."""

    module_id: str
    status: ModuleStatus = "locked"
    progress: float = 0
    time_spent: int = 0
    score: Optional[float] = None
    attempts: int = 0
    completed_at: Optional[str] = None
    last_attempt_at: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "failed")


# =============================================================================
# Goals
# =============================================================================

class Milestone(BaseModel):
    title: str
    target_value: int = Field(ge=0)
    reached: bool = False
