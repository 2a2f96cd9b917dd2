"""Keyword auto-tagging against a fixed tag vocabulary."""

from __future__ import annotations

import re
from functools import lru_cache

from skillsync.core.models import Tag

TAG_COLORS = {
    "language": "#8B5CF6",
    "framework": "#EC4899",
    "tool": "#10B981",
    "concept": "#F59E0B",
    "domain": "#3B82F6",
}

# Categories are scanned in this order; a name listed twice keeps its first category.
PREDEFINED_TAGS: dict[str, tuple[str, ...]] = {
    "language": (
        "python", "javascript", "typescript", "go", "rust", "java",
        "csharp", "cpp", "ruby", "php", "swift", "kotlin", "scala",
        "bash", "sql", "yaml", "markdown", "lua",
    ),
    "framework": (
        "react", "vue", "angular", "svelte", "nextjs", "django", "fastapi",
        "flask", "express", "nestjs", "spring", "rails", "laravel",
        "langchain", "llamaindex", "crewai", "autogen",
        "tailwind", "prisma", "drizzle", "shadcn", "htmx", "pydantic",
    ),
    "tool": (
        "docker", "kubernetes", "terraform", "git", "aws", "gcp", "azure",
        "postgresql", "mongodb", "redis", "elasticsearch", "grafana",
        "claude", "openai", "ollama", "gemini",
        "pinecone", "chroma", "weaviate",
        "vscode", "cursor", "bun", "pnpm", "vite",
        "mysql", "sqlite", "supabase", "firebase",
        "vercel", "netlify",
    ),
    "concept": (
        "testing", "security", "performance", "accessibility", "documentation",
        "code-review", "refactoring", "debugging", "ci-cd", "monitoring",
        "prompts", "agents", "rag", "embeddings", "fine-tuning",
        "chain-of-thought", "few-shot", "tool-use", "function-calling",
        "context-window", "system-prompts",
        "mcp",
    ),
    "domain": (
        "web", "mobile", "backend", "frontend", "devops", "ml", "ai",
        "data", "security", "cloud", "embedded", "game-dev",
        "llm", "nlp", "chatbot", "automation", "workflows",
    ),
}


@lru_cache(maxsize=None)
def _word_pattern(word: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)


def contains_word(content: str, word: str) -> bool:
    """Whole-word match, so "scala" does not hit "scalability"."""
    return _word_pattern(word).search(content) is not None


def extract_tags(content: str) -> list[Tag]:
    """Predefined tags mentioned in the content, sorted by (category, name)."""
    tags: list[Tag] = []
    seen: set[str] = set()
    for category, names in PREDEFINED_TAGS.items():
        for name in names:
            if name in seen or not contains_word(content, name):
                continue
            seen.add(name)
            tags.append(
                Tag(id=name, name=name, slug=name, category=category, color=TAG_COLORS[category])
            )
    tags.sort(key=lambda tag: (tag.category, tag.name))
    return tags
