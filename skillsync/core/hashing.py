from __future__ import annotations

import hashlib

ID_LENGTH = 16


def sha256_text(value: str) -> str:
    """Compute deterministic SHA-256 hash for UTF-8 text."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_skill_id(owner: str, repo: str, path: str) -> str:
    """Stable skill identifier derived from where the file lives."""
    return sha256_text(f"{owner}/{repo}:{path}")[:ID_LENGTH]


def content_fingerprint(content: str) -> str:
    """Short hash of raw skill text, used to spot true duplicates."""
    return sha256_text(content)[:ID_LENGTH]
