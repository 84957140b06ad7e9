"""
Slug allocation — stable, unique, URL-safe identifiers for articles.

The existence check in ``allocate_slug`` is a check-then-act sequence, so two
requests racing for the same title can both see a candidate as free.  The
``articles.slug`` unique constraint is the real guard: ``insert_with_unique_slug``
performs the INSERT inside a SAVEPOINT and, when the constraint rejects it,
allocates again (the competitor's row is now visible) and retries.
"""
import logging
import re

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fastblog.errors import Conflict
from fastblog.models import Article

logger = logging.getLogger(__name__)

_SLUG_SPACE_RE = re.compile(r"\s")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9-]")
_SLUG_DASH_RE = re.compile(r"-+")

MAX_INSERT_ATTEMPTS = 5


def slugify(text: str, fallback: str = "article") -> str:
    """
    Return a lowercase ``[a-z0-9-]`` slug derived from *text*, or *fallback*
    when nothing survives the filtering.
    """
    slug = _SLUG_SPACE_RE.sub("-", text.lower())
    slug = _SLUG_STRIP_RE.sub("", slug)
    slug = _SLUG_DASH_RE.sub("-", slug).strip("-")
    return slug or fallback


async def _slug_taken(db: AsyncSession, slug: str, exclude_id: int | None) -> bool:
    q = select(func.count()).select_from(Article).where(Article.slug == slug)
    if exclude_id is not None:
        q = q.where(Article.id != exclude_id)
    return (await db.execute(q)).scalar_one() > 0


async def allocate_slug(
    db: AsyncSession,
    title: str,
    exclude_id: int | None = None,
    fallback: str = "article",
) -> str:
    """
    Return the first free slug among ``base``, ``base-1``, ``base-2``, …

    *exclude_id* lets an article keep its own slug when re-checking.
    """
    base = slugify(title, fallback)
    candidate = base
    suffix = 1
    while await _slug_taken(db, candidate, exclude_id):
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


async def insert_with_unique_slug(
    db: AsyncSession,
    article: Article,
    title: str,
    fallback: str = "article",
) -> Article:
    """
    Allocate a slug for *article*, insert it, and absorb slug collisions
    with concurrent writers by re-allocating.
    """
    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        article.slug = await allocate_slug(db, title, fallback=fallback)
        try:
            async with db.begin_nested():
                db.add(article)
                await db.flush()
            return article
        except IntegrityError as exc:
            if not await _slug_taken(db, article.slug, None):
                # Some other constraint failed; not ours to retry.
                raise
            logger.warning(
                "Slug %r taken concurrently (attempt %d/%d): %s",
                article.slug, attempt, MAX_INSERT_ATTEMPTS, exc.orig,
            )
    raise Conflict(f"Could not allocate a unique slug for {title!r}")
