"""Default catalog content.

Seeds the tutoring subjects and the starter learning paths when the catalog
tables are empty. Existing rows are never touched.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import LearningModule, LearningPath, Subject

logger = logging.getLogger(__name__)


def _socratic_prompt(field: str, method: List[str], domains: str) -> str:
    lines = "\n".join(f"- {item}" for item in method)
    return (
        f"You are 'AI Professor', a Socratic tutor specialized in {field}.\n\n"
        f"Your method:\n"
        f"- NEVER give the direct or final answer\n"
        f"{lines}\n\n"
        f"Areas you master: {domains}."
    )


DEFAULT_SUBJECTS: List[Dict[str, Any]] = [
    {
        "id": "mathematics",
        "name": "Mathematics",
        "system_prompt": _socratic_prompt(
            "mathematics",
            [
                "Ask guiding questions that lead the student to the solution",
                "Break complex problems into simpler steps",
                "If the student gets frustrated, offer more direct hints while staying Socratic",
            ],
            "algebra, geometry, calculus, statistics, trigonometry",
        ),
        "difficulty": "intermediate",
        "concepts": ["algebra", "geometry", "calculus", "statistics", "equation", "function"],
    },
    {
        "id": "history",
        "name": "History",
        "system_prompt": _socratic_prompt(
            "history",
            [
                "Connect historical events with the present",
                "Help analyze causes and consequences",
                "Encourage understanding of different historical perspectives",
            ],
            "ancient, modern and contemporary history",
        ),
        "difficulty": "intermediate",
        "concepts": ["civilization", "war", "politics", "culture", "economy", "society"],
    },
    {
        "id": "grammar",
        "name": "Grammar",
        "system_prompt": _socratic_prompt(
            "grammar and language",
            [
                "Use clear examples and counterexamples",
                "Let the student find the errors by themselves",
                "Explain why a rule exists, not only what it says",
            ],
            "syntax, morphology, spelling, semantics, writing",
        ),
        "difficulty": "intermediate",
        "concepts": ["syntax", "morphology", "spelling", "semantics", "writing"],
    },
    {
        "id": "science",
        "name": "Science",
        "system_prompt": _socratic_prompt(
            "natural sciences",
            [
                "Encourage observation and the scientific method",
                "Relate abstract concepts to the real world",
                "Guide the student to formulate hypotheses and predictions",
            ],
            "physics, chemistry, biology, geology, basic astronomy",
        ),
        "difficulty": "intermediate",
        "concepts": ["scientific method", "matter", "energy", "life", "universe"],
    },
    {
        "id": "physics",
        "name": "Physics",
        "system_prompt": _socratic_prompt(
            "physics",
            [
                "Reduce physical problems to fundamental principles",
                "Use everyday examples to explain forces and motion",
                "Relate theory to thought experiments",
            ],
            "mechanics, thermodynamics, electromagnetism, optics, modern physics",
        ),
        "difficulty": "advanced",
        "concepts": ["force", "energy", "motion", "wave", "electricity", "magnetism"],
    },
    {
        "id": "chemistry",
        "name": "Chemistry",
        "system_prompt": _socratic_prompt(
            "chemistry",
            [
                "Picture reactions at the atomic and molecular level",
                "Relate macroscopic properties to microscopic structure",
                "Use analogies to explain bonds and states of matter",
            ],
            "organic and inorganic chemistry, stoichiometry, chemical thermodynamics",
        ),
        "difficulty": "advanced",
        "concepts": ["atom", "bond", "reaction", "periodic table", "stoichiometry"],
    },
    {
        "id": "biology",
        "name": "Biology",
        "system_prompt": _socratic_prompt(
            "biology",
            [
                "Connect structure with function in living systems",
                "Explain processes from the cellular to the ecosystem level",
                "Use analogies for complex processes such as genetics",
            ],
            "cell biology, genetics, evolution, ecology, physiology",
        ),
        "difficulty": "intermediate",
        "concepts": ["cell", "DNA", "evolution", "ecosystem", "organism", "metabolism"],
    },
    {
        "id": "philosophy",
        "name": "Philosophy",
        "system_prompt": _socratic_prompt(
            "philosophy",
            [
                "Question assumptions and premises",
                "Encourage logical analysis and rigorous argument",
                "Explore schools of thought without bias",
            ],
            "ethics, logic, metaphysics, epistemology, history of philosophy",
        ),
        "difficulty": "advanced",
        "concepts": ["ethics", "logic", "metaphysics", "epistemology", "reasoning"],
    },
    {
        "id": "programming",
        "name": "Programming",
        "system_prompt": _socratic_prompt(
            "programming and computer science",
            [
                "Work through the algorithm before the code",
                "Help debug by asking questions about the control flow",
                "Explain abstract concepts with concrete analogies",
            ],
            "algorithms, data structures, web development, databases, Python, JavaScript",
        ),
        "difficulty": "advanced",
        "concepts": ["algorithm", "variable", "loop", "function", "object", "debugging"],
    },
]


DEFAULT_LEARNING_PATHS: List[Dict[str, Any]] = [
    {
        "id": "math-foundations",
        "title": "Mathematics Foundations",
        "description": "Build a solid base in arithmetic, basic algebra and problem solving.",
        "subject": "mathematics",
        "difficulty": "beginner",
        "estimated_duration": 12,
        "tags": ["mathematics", "algebra", "beginners"],
        "is_recommended": True,
        "average_rating": 4.7,
        "prerequisites": ["Basic operations"],
        "learning_objectives": [
            "Understand essential arithmetic operations",
            "Get started with algebraic thinking",
            "Apply problem-solving strategies",
        ],
        "modules": [
            {
                "title": "Essential arithmetic",
                "description": "Review of basic operations, fractions and percentages.",
                "estimated_duration": 60,
                "type": "lesson",
                "content": {
                    "type": "text",
                    "title": "Key arithmetic concepts",
                    "description": "Theory and exercises to refresh arithmetic.",
                    "resources": [
                        {
                            "id": "res-1",
                            "title": "Visual guide to fractions",
                            "type": "document",
                            "url": "https://example.com/fractions.pdf",
                        },
                    ],
                },
            },
            {
                "title": "Introduction to algebra",
                "description": "Algebraic expressions, simple equations and patterns.",
                "estimated_duration": 75,
                "type": "practice",
                "content": {
                    "type": "interactive",
                    "title": "Solving equations step by step",
                    "description": "Guided exercises with immediate feedback.",
                },
            },
            {
                "title": "Problem solving",
                "description": "Strategies for everyday math problems.",
                "estimated_duration": 90,
                "type": "project",
                "content": {
                    "type": "conversation",
                    "title": "Problem lab",
                    "description": "Guided activities with the AI tutor to practice logical thinking.",
                    "prompts": [
                        "Describe the problem in your own words",
                        "Identify the known and unknown information",
                    ],
                },
            },
        ],
    },
    {
        "id": "history-latin-america",
        "title": "Latin American History: 20th Century",
        "description": "Explore the key events that shaped Latin America in the 20th century.",
        "subject": "history",
        "difficulty": "intermediate",
        "estimated_duration": 10,
        "tags": ["history", "latin america", "politics"],
        "is_recommended": True,
        "average_rating": 4.6,
        "prerequisites": ["Basic world history"],
        "learning_objectives": [
            "Understand the key political and social processes",
            "Analyze the consequences of the main events",
            "Think critically about historical sources",
        ],
        "modules": [
            {
                "title": "Revolutions and social movements",
                "description": "The revolutions in Mexico, Cuba and other countries.",
                "estimated_duration": 70,
                "type": "lesson",
                "content": {
                    "type": "text",
                    "title": "Political context of the 20th century",
                    "description": "Timelines and interactive maps.",
                },
            },
            {
                "title": "Dictatorships and transitions to democracy",
                "description": "Authoritarian regimes and their impact.",
                "estimated_duration": 80,
                "type": "discussion",
                "content": {
                    "type": "conversation",
                    "title": "Guided debates",
                    "description": "Socratic questions to analyze causes and consequences.",
                    "prompts": ["Which factors made the rise of dictatorships possible?"],
                },
            },
            {
                "title": "Economy and culture",
                "description": "Economic, cultural and social change in the region.",
                "estimated_duration": 60,
                "type": "project",
                "content": {
                    "type": "interactive",
                    "title": "Thematic research",
                    "description": "Final project presenting your findings.",
                },
            },
        ],
    },
]


def build_learning_path(data: Dict[str, Any], position: int = 0) -> LearningPath:
    """Create a LearningPath with modules ``<path-id>-module-<n>`` in order."""
    path_fields = {key: value for key, value in data.items() if key != "modules"}
    path = LearningPath(enrollment_count=0, position=position, **path_fields)
    path.modules = [
        LearningModule(
            id=f"{data['id']}-module-{index}",
            order_index=index,
            is_required=module.get("is_required", True),
            prerequisites=module.get("prerequisites", []),
            **{key: value for key, value in module.items() if key not in ("is_required", "prerequisites")},
        )
        for index, module in enumerate(data["modules"], start=1)
    ]
    return path


async def seed_catalog(session_maker: async_sessionmaker[AsyncSession]) -> Dict[str, int]:
    """Insert default subjects and learning paths into empty tables."""
    created = {"subjects": 0, "learning_paths": 0}

    async with session_maker() as session:
        async with session.begin():
            subject_count = await session.scalar(select(func.count()).select_from(Subject))
            if not subject_count:
                session.add_all(Subject(is_active=True, **subject) for subject in DEFAULT_SUBJECTS)
                created["subjects"] = len(DEFAULT_SUBJECTS)

            path_count = await session.scalar(select(func.count()).select_from(LearningPath))
            if not path_count:
                session.add_all(
                    build_learning_path(path, position=index)
                    for index, path in enumerate(DEFAULT_LEARNING_PATHS)
                )
                created["learning_paths"] = len(DEFAULT_LEARNING_PATHS)

    if any(created.values()):
        logger.info(
            f"Seeded catalog: {created['subjects']} subjects, {created['learning_paths']} learning paths"
        )
    return created
