"""YAML front-matter, heading, and reading-time extraction."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any

import yaml

from kbtree.errors import MalformedFrontMatter

log = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200

# Front-matter delimiters must sit alone on their line
_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
_CLOSE_RE = re.compile(r"^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)", re.MULTILINE)
# "# Title" but not "## Title"; trailing closing hashes are dropped
_ATX_H1_RE = re.compile(r"^ {0,3}#[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
_SETEXT_H1_RE = re.compile(r"^ {0,3}=+[ \t]*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")

# Markdown syntax stripped before counting words
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_MARKUP_RE = re.compile(r"[*_`~>#|]+")
_WORD_RE = re.compile(r"\w")

#: Front-matter keys we understand, each with its accepted spellings in priority order
_FRONTMATTER_KEYS: dict[str, tuple[str, ...]] = {
    "title": ("title",),
    "tags": ("tags",),
    "custom_id": ("custom_id", "slug", "id"),
}


@dataclass
class DocumentMeta:
    """Metadata extracted from one document's raw text."""

    title: str | None = None
    tags: str | None = None
    custom_id: str | None = None
    derived_title: str | None = None
    reading_time: int = 0
    body: str = ""
    error: MalformedFrontMatter | None = None

    def effective_title(self, file_name: str | None = None) -> str | None:
        """Front-matter title, else the first H1, else *file_name*."""
        return self.title or self.derived_title or file_name


# ---------------------------------------------------------------------------
# Front matter
# ---------------------------------------------------------------------------


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML front-matter from body text.

    Returns ``(metadata_dict, body)``; ``metadata_dict`` is empty when there
    is no front-matter block.  Raises :class:`MalformedFrontMatter` when the
    block is never closed, is not valid YAML, or is not a mapping.
    """
    opening = _OPEN_RE.match(content)
    if not opening:
        return {}, content

    closing = _CLOSE_RE.search(content, opening.end())
    if not closing:
        raise MalformedFrontMatter("front-matter block is never closed")

    block = content[opening.end() : closing.start()]
    try:
        meta = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise MalformedFrontMatter(f"invalid YAML in front matter: {exc}") from exc

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise MalformedFrontMatter(f"front matter must be a mapping, got {type(meta).__name__}")
    return meta, content[closing.end() :]


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalise_tags(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(v) for v in value if v is not None]
    else:
        items = [str(value)]
    cleaned = [t.strip() for t in items if t and t.strip()]
    return ",".join(cleaned) or None


# ---------------------------------------------------------------------------
# Body
# ---------------------------------------------------------------------------


def find_h1_title(body: str) -> str | None:
    """Return the text of the first level-1 heading outside code fences."""
    in_code_block = False
    previous = ""
    for line in body.splitlines():
        if _FENCE_RE.match(line):
            in_code_block = not in_code_block
            previous = ""
            continue
        if in_code_block:
            continue

        m = _ATX_H1_RE.match(line)
        if m:
            return m.group(1).strip()
        if previous.strip() and _SETEXT_H1_RE.match(line):
            return previous.strip()
        previous = line
    return None


def plain_text(body: str) -> str:
    """Reduce markdown to roughly the text a reader would see."""
    lines: list[str] = []
    for line in body.splitlines():
        if _FENCE_RE.match(line):
            continue
        lines.append(line)
    text = "\n".join(lines)
    text = _IMAGE_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _HTML_TAG_RE.sub(" ", text)
    return _MARKUP_RE.sub(" ", text)


def count_words(body: str) -> int:
    """Count whitespace-delimited tokens that contain at least one word character."""
    return sum(1 for token in plain_text(body).split() if _WORD_RE.search(token))


def estimate_reading_time(body: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Minutes needed to read *body*; 0 when empty, at least 1 otherwise."""
    if not body.strip():
        return 0
    return max(1, math.ceil(count_words(body) / words_per_minute))


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def decode(raw: bytes | str) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text.removeprefix("\ufeff")


def extract_metadata(
    raw: bytes | str,
    *,
    file_name: str | None = None,
    words_per_minute: int = WORDS_PER_MINUTE,
) -> DocumentMeta:
    """Parse one document into a :class:`DocumentMeta`.

    Malformed front matter is recorded on ``meta.error`` and logged; the
    document still gets a derived title and reading time.
    """
    content = decode(raw)
    error: MalformedFrontMatter | None = None
    try:
        frontmatter, body = parse_frontmatter(content)
    except MalformedFrontMatter as exc:
        log.warning("%s: %s", file_name or "<document>", exc)
        error = exc
        frontmatter = {}
        opening = _OPEN_RE.match(content)
        body = content[opening.end() :] if opening else content

    lowered = {str(key).lower(): value for key, value in frontmatter.items()}
    fields: dict[str, Any] = {}
    for target, spellings in _FRONTMATTER_KEYS.items():
        for spelling in spellings:
            if lowered.get(spelling) is not None:
                fields[target] = lowered[spelling]
                break

    return DocumentMeta(
        title=_as_text(fields.get("title")),
        tags=_normalise_tags(fields.get("tags")),
        custom_id=_as_text(fields.get("custom_id")),
        derived_title=find_h1_title(body),
        reading_time=estimate_reading_time(body, words_per_minute),
        body=body,
        error=error,
    )
