"""Database models for per-user tutoring state.

This module defines SQLAlchemy ORM models for:
- Chat Sessions
- Chat Messages
- Subject Progress
- Goals
- User Learning Paths (enrollments)
"""

from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..base import Base, utcnow_iso
from ..catalog.models import LearningPath


class ChatSession(Base):
    """One tutoring conversation, optionally tied to a subject."""
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    subject = Column(String(64), nullable=True, index=True)
    difficulty = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    duration = Column(Integer, default=0, nullable=False)  # seconds, never decreases
    last_message_at = Column(String(50), nullable=True)
    concepts_learned = Column(JSON, nullable=False, default=list)
    created_at = Column(String(50), default=utcnow_iso, index=True)
    updated_at = Column(String(50), default=utcnow_iso, onupdate=utcnow_iso)

    # Relationships
    messages = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )

    __table_args__ = (
        Index("idx_chat_session_user_active", "user_id", "is_active"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "difficulty": self.difficulty,
            "is_active": self.is_active,
            "duration": self.duration,
            "last_message_at": self.last_message_at,
            "concepts_learned": list(self.concepts_learned or []),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ChatMessage(Base):
    """A single message inside a chat session."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_user_message = Column(Boolean, nullable=False)
    message_type = Column(String(20), nullable=False)
    difficulty = Column(String(20), nullable=False)
    concepts = Column(JSON, nullable=False, default=list)
    analysis = Column(JSON, nullable=True)  # MessageAnalysis
    attachments = Column(JSON, nullable=True)
    reply_pending = Column(Boolean, default=False, nullable=False)
    created_at = Column(String(50), default=utcnow_iso, index=True)

    # Relationships
    session = relationship("ChatSession", back_populates="messages")

    __table_args__ = (
        Index("idx_chat_message_session_order", "session_id", "created_at", "id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "content": self.content,
            "is_user_message": self.is_user_message,
            "message_type": self.message_type,
            "difficulty": self.difficulty,
            "concepts": list(self.concepts or []),
            "analysis": self.analysis,
            "attachments": [
                {"name": item.get("name"), "mime_type": item.get("mime_type")}
                for item in (self.attachments or [])
            ],
            "reply_pending": self.reply_pending,
            "created_at": self.created_at,
        }


class SubjectProgress(Base):
    """Cumulative per-user statistics and experience in a subject."""
    __tablename__ = "subject_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    subject = Column(String(64), nullable=False, index=True)
    concepts_learned = Column(JSON, nullable=False, default=list)
    total_sessions = Column(Integer, default=0, nullable=False)
    total_messages = Column(Integer, default=0, nullable=False)
    total_time_spent = Column(Integer, default=0, nullable=False)  # seconds
    xp = Column(Integer, default=0, nullable=False)
    level = Column(Integer, default=1, nullable=False)
    progress = Column(Float, default=0.0, nullable=False)  # 0 - 100
    last_activity = Column(String(50), default=utcnow_iso, index=True)
    created_at = Column(String(50), default=utcnow_iso)
    updated_at = Column(String(50), default=utcnow_iso, onupdate=utcnow_iso)

    __table_args__ = (
        UniqueConstraint("user_id", "subject", name="unique_subject_progress"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "concepts_learned": list(self.concepts_learned or []),
            "total_sessions": self.total_sessions,
            "total_messages": self.total_messages,
            "total_time_spent": self.total_time_spent,
            "xp": self.xp,
            "level": self.level,
            "progress": self.progress,
            "last_activity": self.last_activity,
        }


class Goal(Base):
    """User-defined learning target."""
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(30), nullable=False, default="custom")
    target_value = Column(Integer, nullable=False)
    current_value = Column(Integer, default=0, nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)
    priority = Column(String(20), nullable=False, default="medium")
    category = Column(String(50), nullable=True)
    subject = Column(String(64), nullable=True)
    deadline = Column(String(50), nullable=True)
    milestones = Column(JSON, nullable=True)  # Ordered list of Milestone
    completed_at = Column(String(50), nullable=True)
    created_at = Column(String(50), default=utcnow_iso, index=True)
    updated_at = Column(String(50), default=utcnow_iso, onupdate=utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "target_value": self.target_value,
            "current_value": self.current_value,
            "status": self.status,
            "priority": self.priority,
            "category": self.category,
            "subject": self.subject,
            "deadline": self.deadline,
            "milestones": list(self.milestones or []),
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class UserLearningPath(Base):
    """A user's enrollment in a learning path and per-module state."""
    __tablename__ = "user_learning_paths"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    path_id = Column(String(64), ForeignKey("learning_paths.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="not_started")
    progress = Column(Float, default=0.0, nullable=False)
    current_module_id = Column(String(128), nullable=True)
    completed_modules = Column(JSON, nullable=False, default=list)
    total_time_spent = Column(Integer, default=0, nullable=False)
    module_progress = Column(JSON, nullable=False, default=list)  # List of ModuleProgress
    score = Column(Float, nullable=True)
    version = Column(Integer, default=1, nullable=False)  # compare-and-set token
    started_at = Column(String(50), default=utcnow_iso, index=True)
    last_activity_at = Column(String(50), default=utcnow_iso)
    completed_at = Column(String(50), nullable=True)

    # Relationships
    path = relationship(LearningPath, lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "path_id", name="unique_user_learning_path"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "path_id": self.path_id,
            "status": self.status,
            "progress": self.progress,
            "current_module_id": self.current_module_id,
            "completed_modules": list(self.completed_modules or []),
            "started_at": self.started_at,
            "last_activity_at": self.last_activity_at,
            "completed_at": self.completed_at,
            "total_time_spent": self.total_time_spent,
            "module_progress": list(self.module_progress or []),
            "score": self.score,
        }
