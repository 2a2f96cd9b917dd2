"""Turn raw SKILL.md text into a Skill record."""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml

from skillsync.core.hashing import content_fingerprint
from skillsync.core.models import Skill, SkillFile

LOGGER = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
WHITESPACE_RE = re.compile(r"\s+")
HYPHENS_RE = re.compile(r"-+")

DEFAULT_TITLE = "Untitled Skill"
MAX_SLUG_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 200
MAX_DESCRIPTION_LINES = 3


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split optional YAML front matter from the markdown body."""
    match = FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        LOGGER.warning("Failed to parse frontmatter: %s", exc)
        return {}, content
    if not isinstance(data, dict):
        return {}, content[match.end() :]
    return data, content[match.end() :]


def extract_first_heading(body: str) -> str:
    for raw in body.splitlines():
        line = raw.strip()
        if line.startswith("# "):
            return line[2:].strip()
        if line.startswith("## "):
            return line[3:].strip()
    return DEFAULT_TITLE


def extract_description(body: str) -> str:
    """Up to three prose lines following the first heading."""
    collecting = False
    lines: list[str] = []
    for raw in body.splitlines():
        line = raw.strip()
        if line.startswith("```") or line.startswith("- "):
            break
        if line.startswith("#"):
            collecting = True
            continue
        if collecting and line:
            lines.append(line)
            if len(lines) >= MAX_DESCRIPTION_LINES:
                break

    result = " ".join(lines)
    if len(result) > MAX_DESCRIPTION_LENGTH:
        result = result[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return result


def generate_slug(title: str) -> str:
    """URL-safe slug, at most 50 characters; may be empty."""
    slug = SLUG_STRIP_RE.sub("", title.lower())
    slug = WHITESPACE_RE.sub("-", slug)
    slug = HYPHENS_RE.sub("-", slug).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


class SkillParser:
    """Stateless parser; safe to share across tasks."""

    def parse(self, content: str, source: SkillFile) -> Skill:
        frontmatter, body = parse_frontmatter(content)

        title = _string_field(frontmatter, "name") or extract_first_heading(body)
        description = _string_field(frontmatter, "description") or extract_description(body)

        metadata = frontmatter.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        def meta(key: str) -> str:
            return _string_field(metadata, key) or _string_field(frontmatter, key)

        slug = generate_slug(title) or f"skill-{source.id[:8]}"
        return Skill(
            id=source.id,
            slug=slug,
            title=title,
            description=description,
            content=content,
            fingerprint=content_fingerprint(content),
            source_id=source.repo_name,
            file_path=source.path,
            version=meta("version"),
            author=meta("author"),
            license=meta("license"),
        )
