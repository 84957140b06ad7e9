"""
Text derivations shared by the lifecycle, assembler and search services.

Everything here is a pure function of its arguments.
"""
import re

import nh3

from fastblog.config import settings

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

ELLIPSIS = "..."


def sanitize_html(raw: str) -> str:
    """Return *raw* author content reduced to nh3's safe tag allow-list."""
    return nh3.clean(raw)


def strip_tags(html: str) -> str:
    text = _HTML_TAG_RE.sub(" ", html or "")
    return _WHITESPACE_RE.sub(" ", text).strip()


def reading_time(html: str, words_per_minute: int | None = None) -> int:
    wpm = words_per_minute or settings.WORDS_PER_MINUTE
    return max(1, len(strip_tags(html).split()) // wpm)


def derive_excerpt(html: str, max_length: int | None = None) -> str:
    """
    Plain-text excerpt of *html*: cut at the last space that fits in
    *max_length* characters and mark the cut with an ellipsis.
    """
    max_length = max_length or settings.EXCERPT_LENGTH
    text = strip_tags(html)
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return f"{truncated}{ELLIPSIS}"


def share_description(excerpt: str | None, subtitle: str | None, html: str) -> str:
    if excerpt:
        return excerpt
    if subtitle:
        return subtitle
    limit = settings.SHARE_DESCRIPTION_LENGTH
    text = strip_tags(html)
    if len(text) > limit:
        return f"{text[:limit - len(ELLIPSIS)]}{ELLIPSIS}"
    return text


def highlight_excerpt(text: str, term: str, before: int = 50, after: int = 100) -> str:
    """
    Window of *text* around the first case-insensitive occurrence of *term*,
    with an ellipsis on every side that was cut.  Falls back to the opening
    150 characters when the term does not occur.
    """
    # Matched on the original text: lower() can change string length.
    match = re.search(re.escape(term), text, re.IGNORECASE) if term else None
    if match is None:
        end = min(150, len(text))
        excerpt = text[:end]
        return f"{excerpt}{ELLIPSIS}" if end < len(text) else excerpt

    start = max(0, match.start() - before)
    end = min(len(text), match.end() + after)
    excerpt = text[start:end]
    if start > 0:
        excerpt = f"{ELLIPSIS}{excerpt}"
    if end < len(text):
        excerpt = f"{excerpt}{ELLIPSIS}"
    return excerpt


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input only ever matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
