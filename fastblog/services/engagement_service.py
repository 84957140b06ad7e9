"""
Engagement service — claps, bookmarks and comments, and the denormalised
counters they feed on the Article row.

Design notes
------------
- Claps: the presence of a (user, article) row *is* the toggle flag.  After
  either branch ``claps_count`` is recomputed as ``COUNT(*)`` over the clap
  rows and written back, so the counter cannot drift.
- Bookmarks and comments use "conditional increment": the counter only
  moves when the detail-row mutation itself succeeded.  The bookmark
  decrement is floored at zero in SQL.
- Inserts guarded by a (user, article) unique constraint run inside a
  SAVEPOINT; a concurrent duplicate is absorbed as "already in that state"
  instead of aborting the request transaction.
- Every sequence here runs in the request's single transaction (see
  ``get_db``), so observers never see a detail row without its counter.
"""
import logging

from sqlalchemy import and_, case, delete, desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fastblog.content import sanitize_html
from fastblog.dependencies import clamp_pagination
from fastblog.errors import NotFound, ValidationFailed
from fastblog.models import Article, ArticleStatus, Bookmark, Clap, Comment, utcnow
from fastblog.schemas import CommentCreate, PaginatedResponse
from fastblog.services.article_service import article_load_options, page_count, visible_to
from fastblog.services.assembler import assemble_articles

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


async def _require_visible(db: AsyncSession, article_id: int, viewer_id: int) -> Article:
    q = select(Article).where(Article.id == article_id, visible_to(viewer_id))
    article = (await db.execute(q)).scalar_one_or_none()
    if article is None:
        raise NotFound("Article not found")
    return article


# ---------------------------------------------------------------------------
# Claps
# ---------------------------------------------------------------------------

async def _user_clap(db: AsyncSession, user_id: int, article_id: int) -> Clap | None:
    q = select(Clap).where(Clap.user_id == user_id, Clap.article_id == article_id)
    return (await db.execute(q)).scalar_one_or_none()


async def toggle_clap(db: AsyncSession, user_id: int, article_id: int, clap_count: int = 1) -> dict:
    """
    Clap if the user has not clapped yet, otherwise withdraw the clap.

    *clap_count* is stored on the row but the article total counts rows.
    """
    await _require_visible(db, article_id, user_id)

    existing = await _user_clap(db, user_id, article_id)
    if existing is not None:
        await db.execute(
            delete(Clap).where(Clap.id == existing.id).execution_options(**_NO_SYNC)
        )
        db.expunge(existing)
    else:
        now = utcnow()
        try:
            async with db.begin_nested():
                db.add(Clap(
                    user_id=user_id,
                    article_id=article_id,
                    clap_count=clap_count,
                    created_at=now,
                    updated_at=now,
                ))
                await db.flush()
        except IntegrityError:
            if await _user_clap(db, user_id, article_id) is None:
                raise
            logger.info("Concurrent clap by user %d on article %d absorbed", user_id, article_id)

    total = (
        await db.execute(select(func.count()).select_from(Clap).where(Clap.article_id == article_id))
    ).scalar_one()
    await db.execute(
        update(Article)
        .where(Article.id == article_id)
        .values(claps_count=total)
        .execution_options(**_NO_SYNC)
    )

    mine = await _user_clap(db, user_id, article_id)
    return {
        "claps_count": total,
        "has_clapped": mine is not None,
        "user_clap_count": mine.clap_count if mine is not None else 0,
    }


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

async def _has_bookmark(db: AsyncSession, user_id: int, article_id: int) -> bool:
    q = select(Bookmark.id).where(Bookmark.user_id == user_id, Bookmark.article_id == article_id)
    return (await db.execute(q)).scalar_one_or_none() is not None


async def _bookmarks_count(db: AsyncSession, article_id: int) -> int:
    q = select(Article.bookmarks_count).where(Article.id == article_id)
    return (await db.execute(q)).scalar_one()


async def bookmark_article(db: AsyncSession, user_id: int, article_id: int) -> dict:
    """Idempotent insert; ``changed`` is False when it was already bookmarked."""
    await _require_visible(db, article_id, user_id)

    changed = False
    if not await _has_bookmark(db, user_id, article_id):
        try:
            async with db.begin_nested():
                db.add(Bookmark(user_id=user_id, article_id=article_id, created_at=utcnow()))
                await db.flush()
            changed = True
        except IntegrityError:
            if not await _has_bookmark(db, user_id, article_id):
                raise
            logger.info("Concurrent bookmark by user %d on article %d absorbed", user_id, article_id)

    if changed:
        await db.execute(
            update(Article)
            .where(Article.id == article_id)
            .values(bookmarks_count=Article.bookmarks_count + 1)
            .execution_options(**_NO_SYNC)
        )

    return {
        "bookmarked": True,
        "changed": changed,
        "bookmarks_count": await _bookmarks_count(db, article_id),
    }


async def unbookmark_article(db: AsyncSession, user_id: int, article_id: int) -> dict:
    """Remove the bookmark; the counter moves only when a row was deleted."""
    await _require_visible(db, article_id, user_id)

    result = await db.execute(
        delete(Bookmark)
        .where(Bookmark.user_id == user_id, Bookmark.article_id == article_id)
        .execution_options(**_NO_SYNC)
    )
    changed = result.rowcount > 0
    if changed:
        await db.execute(
            update(Article)
            .where(Article.id == article_id)
            .values(
                bookmarks_count=case(
                    (Article.bookmarks_count > 0, Article.bookmarks_count - 1),
                    else_=0,
                )
            )
            .execution_options(**_NO_SYNC)
        )

    return {
        "bookmarked": False,
        "changed": changed,
        "bookmarks_count": await _bookmarks_count(db, article_id),
    }


async def get_user_bookmarks(
    db: AsyncSession, user_id: int, page: int = 1, limit: int = 20
) -> PaginatedResponse:
    """Published articles bookmarked by *user_id*, most recent bookmark first."""
    page, limit = clamp_pagination(page, limit)
    joined = and_(Bookmark.article_id == Article.id, Bookmark.user_id == user_id)
    published = Article.status == ArticleStatus.PUBLISHED

    total = (
        await db.execute(
            select(func.count()).select_from(Article).join(Bookmark, joined).where(published)
        )
    ).scalar_one()

    q = (
        select(Article)
        .join(Bookmark, joined)
        .where(published)
        .options(*article_load_options())
        .order_by(desc(Bookmark.created_at), desc(Bookmark.id))
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    articles = list((await db.execute(q)).unique().scalars().all())
    return PaginatedResponse(
        items=await assemble_articles(db, articles, user_id),
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

def _comment_to_dict(comment: Comment) -> dict:
    author = comment.author
    return {
        "id": comment.id,
        "article_id": comment.article_id,
        "content": comment.content,
        "content_html": comment.content_html,
        "author": {
            "id": author.id,
            "username": author.username,
            "display_name": author.display_name,
            "avatar_url": author.avatar_url,
            "is_verified": author.is_verified,
        },
        "parent_id": comment.parent_id,
        "claps_count": comment.claps_count,
        "replies_count": comment.replies_count,
        "is_author_reply": comment.is_author_reply,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
        "replies": None,
    }


async def add_comment(
    db: AsyncSession, user_id: int, article_id: int, data: CommentCreate
) -> dict:
    """
    Insert a comment (or a one-level reply) and bump the parent's
    ``replies_count`` and the article's ``comments_count``.

    ``is_author_reply`` is true when the parent comment was written by the
    article's author.
    """
    article = await _require_visible(db, article_id, user_id)

    parent = None
    if data.parent_id is not None:
        parent = (
            await db.execute(select(Comment).where(Comment.id == data.parent_id))
        ).scalar_one_or_none()
        if parent is None or parent.article_id != article_id:
            raise ValidationFailed({"parent_id": "Parent comment not found on this article"})
        if parent.parent_id is not None:
            raise ValidationFailed({"parent_id": "Replies cannot be nested"})

    now = utcnow()
    comment = Comment(
        article_id=article_id,
        user_id=user_id,
        parent_id=data.parent_id,
        content=data.content,
        content_html=sanitize_html(data.content),
        is_author_reply=parent is not None and parent.user_id == article.author_id,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.flush()

    if parent is not None:
        await db.execute(
            update(Comment)
            .where(Comment.id == parent.id)
            .values(replies_count=Comment.replies_count + 1)
            .execution_options(**_NO_SYNC)
        )
    await db.execute(
        update(Article)
        .where(Article.id == article_id)
        .values(comments_count=Article.comments_count + 1)
        .execution_options(**_NO_SYNC)
    )
    logger.info("User %d commented on article %d (comment %d)", user_id, article_id, comment.id)

    q = (
        select(Comment)
        .where(Comment.id == comment.id)
        .options(joinedload(Comment.author))
        .execution_options(populate_existing=True)
    )
    return _comment_to_dict((await db.execute(q)).unique().scalar_one())


async def get_comments(db: AsyncSession, article_id: int, viewer_id: int | None = None) -> list[dict]:
    """Top-level comments oldest first, each carrying its replies."""
    q = select(Article.id).where(Article.id == article_id, visible_to(viewer_id))
    if (await db.execute(q)).scalar_one_or_none() is None:
        raise NotFound("Article not found")

    q = (
        select(Comment)
        .where(Comment.article_id == article_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at, Comment.id)
        .execution_options(populate_existing=True)
    )
    comments = (await db.execute(q)).unique().scalars().all()

    threads: list[dict] = []
    by_id: dict[int, dict] = {}
    for comment in comments:
        item = _comment_to_dict(comment)
        if comment.parent_id is None:
            item["replies"] = []
            by_id[comment.id] = item
            threads.append(item)
        elif comment.parent_id in by_id:
            by_id[comment.parent_id]["replies"].append(item)
    return threads
