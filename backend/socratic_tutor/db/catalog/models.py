"""Database models for the read-mostly catalog.

This module defines SQLAlchemy ORM models for:
- Subjects (tutoring domains with system prompt and concept vocabulary)
- Learning Paths
- Learning Modules
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


class Subject(Base):
    """Tutoring subject with its system prompt and concept vocabulary."""
    __tablename__ = "subjects"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    system_prompt = Column(Text, nullable=False)
    difficulty = Column(String(20), nullable=False, default="intermediate")
    concepts = Column(JSON, nullable=False, default=list)  # Ordered vocabulary
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(String(50), default=utcnow_iso)
    updated_at = Column(String(50), default=utcnow_iso, onupdate=utcnow_iso)

    def to_dict(self, include_prompt: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "difficulty": self.difficulty,
            "concepts": list(self.concepts or []),
            "is_active": self.is_active,
            "updated_at": self.updated_at,
        }
        if include_prompt:
            data["system_prompt"] = self.system_prompt
        return data


class LearningPath(Base):
    """An ordered sequence of modules a user can enroll in."""
    __tablename__ = "learning_paths"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject = Column(String(64), nullable=False, index=True)
    difficulty = Column(String(20), nullable=False, default="beginner", index=True)
    estimated_duration = Column(Integer, default=0)  # hours
    prerequisites = Column(JSON, nullable=True)
    learning_objectives = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    is_recommended = Column(Boolean, default=False, index=True)
    enrollment_count = Column(Integer, default=0, nullable=False)
    average_rating = Column(Float, default=0.0, nullable=False)
    position = Column(Integer, default=0, nullable=False)  # Catalog order
    created_at = Column(String(50), default=utcnow_iso)
    updated_at = Column(String(50), default=utcnow_iso, onupdate=utcnow_iso)

    # Relationships
    modules = relationship(
        "LearningModule",
        back_populates="path",
        cascade="all, delete-orphan",
        order_by="LearningModule.order_index",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_learning_path_position", "position", "id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "subject": self.subject,
            "difficulty": self.difficulty,
            "estimated_duration": self.estimated_duration,
            "prerequisites": list(self.prerequisites or []),
            "learning_objectives": list(self.learning_objectives or []),
            "tags": list(self.tags or []),
            "is_recommended": self.is_recommended,
            "enrollment_count": self.enrollment_count,
            "average_rating": self.average_rating,
            "modules": [module.to_dict() for module in self.modules],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class LearningModule(Base):
    """A single unit of a learning path."""
    __tablename__ = "learning_modules"

    id = Column(String(128), primary_key=True)
    path_id = Column(String(64), ForeignKey("learning_paths.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False)
    estimated_duration = Column(Integer, default=0)  # minutes
    type = Column(String(20), nullable=False, default="lesson")
    content = Column(JSON, nullable=True)  # ModuleContent
    is_required = Column(Boolean, default=True, nullable=False)
    prerequisites = Column(JSON, nullable=True)  # List of module IDs

    # Relationships
    path = relationship("LearningPath", back_populates="modules")

    __table_args__ = (
        UniqueConstraint("path_id", "order_index", name="unique_module_order"),
    )

    def to_dict(self) -> Dict[str, Any]:
        from ...engines.types import ModuleContent

        return {
            "id": self.id,
            "path_id": self.path_id,
            "title": self.title,
            "description": self.description,
            "order": self.order_index,
            "estimated_duration": self.estimated_duration,
            "type": self.type,
            "content": ModuleContent.from_stored(self.content, self.title, self.description).model_dump(exclude_none=True),
            "is_required": self.is_required,
            "prerequisites": list(self.prerequisites or []),
        }
