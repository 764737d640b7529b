"""Suggest site sections related to a question."""

import re
from dataclasses import dataclass

from portfolio_copilot.models import PageSuggestion

SKILLS_PAGE = PageSuggestion(
    title="Skills & Tools",
    href="/skills-tools",
    description="Languages, frameworks and tools Amine works with",
)
EXPERIENCE_PAGE = PageSuggestion(
    title="Experience",
    href="/experience",
    description="Roles, responsibilities and projects delivered",
)
EDUCATION_PAGE = PageSuggestion(
    title="Education",
    href="/education",
    description="Degrees and certifications",
)
ABOUT_PAGE = PageSuggestion(
    title="About",
    href="/about",
    description="Background, interests and how Amine works",
)
HOME_PAGE = PageSuggestion(
    title="Home",
    href="/",
    description="Overview, resume and contact links",
)


@dataclass(frozen=True)
class _Category:
    name: str
    stems: tuple[str, ...]
    page: PageSuggestion
    words: tuple[str, ...] = ()

    @property
    def pattern(self) -> re.Pattern[str]:
        alternatives = [re.escape(stem) for stem in self.stems]
        alternatives += [re.escape(word) + r"\b" for word in self.words]
        return re.compile(r"\b(?:" + "|".join(alternatives) + ")", re.IGNORECASE)


# Catalog priority order. Stems match at the start of a word; words must
# match a whole word.
_CATALOG: tuple[_Category, ...] = (
    _Category("skills", ("skill", "abilit", "strength", "expertise", "competen"), SKILLS_PAGE),
    _Category(
        "technologies",
        (
            "technolog", "tech", "stack", "tool", "framework", "language",
            "python", "typescript", "javascript", "react", "next.js", "node",
            "database", "vector",
        ),
        SKILLS_PAGE,
        words=("ai", "llm", "llms", "rag"),
    ),
    _Category(
        "experience",
        (
            "experience", "work", "job", "career", "role", "position",
            "intelswift", "freelance", "company", "employ", "lead",
        ),
        EXPERIENCE_PAGE,
    ),
    _Category("projects", ("project", "built", "build", "portfolio", "achievement"), EXPERIENCE_PAGE),
    _Category(
        "education",
        ("education", "degree", "universit", "school", "stud", "certif", "diploma"),
        EDUCATION_PAGE,
    ),
    _Category(
        "about",
        ("about", "background", "hobb", "interest", "biograph"),
        ABOUT_PAGE,
        words=("who", "bio"),
    ),
    _Category(
        "contact",
        ("contact", "email", "hire", "resume", "reach"),
        HOME_PAGE,
        words=("cv",),
    ),
)

_PATTERNS = tuple((category, category.pattern) for category in _CATALOG)


def suggest_pages(question: str) -> list[PageSuggestion]:
    """Return catalog pages whose keywords appear in the question.

    Matching is case-insensitive. Results follow catalog order, each page
    appears at most once, and an unmatched question yields an empty list.
    """
    if not isinstance(question, str) or not question:
        return []

    pages: list[PageSuggestion] = []
    for category, pattern in _PATTERNS:
        if pattern.search(question) and category.page not in pages:
            pages.append(category.page)
    return pages
