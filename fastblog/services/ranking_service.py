"""
Ranking service — the follow feed and the trending list.

Both are recomputed from the articles table on every call; nothing is kept
in memory between requests.
"""
from datetime import timedelta

from sqlalchemy import case, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fastblog.config import settings
from fastblog.dependencies import clamp_pagination
from fastblog.models import Article, ArticleStatus, Follow, utcnow
from fastblog.schemas import PaginatedResponse
from fastblog.services.article_service import article_load_options, page_count, paginate_articles
from fastblog.services.assembler import assemble_articles

# Upper bound on caller-supplied windows (ten years) keeps datetime arithmetic in range.
MAX_TRENDING_WINDOW_HOURS = 24 * 365 * 10


async def get_feed(db: AsyncSession, viewer_id: int, page: int = 1, limit: int = 20) -> PaginatedResponse:
    """Published articles by authors *viewer_id* follows, newest first."""
    followed = select(Follow.following_id).where(Follow.follower_id == viewer_id)
    filters = [
        Article.author_id.in_(followed),
        Article.status == ArticleStatus.PUBLISHED,
        Article.published_at.is_not(None),
    ]
    return await paginate_articles(
        db, filters, [desc(Article.published_at), desc(Article.id)], page, limit, viewer_id
    )


def trending_score(now):
    """
    SQL expression for the trending score::

        claps*3 + comments*2 + reads + views*0.1 + (published < 24h ago ? 10 : 0)
    """
    recent_cutoff = now - timedelta(hours=settings.TRENDING_RECENT_HOURS)
    recency_boost = case(
        (Article.published_at > recent_cutoff, settings.TRENDING_RECENT_BOOST),
        else_=0,
    )
    return (
        Article.claps_count * 3
        + Article.comments_count * 2
        + Article.reads_count
        + Article.views_count * 0.1
        + recency_boost
    )


async def get_trending(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    window_hours: int | None = None,
    viewer_id: int | None = None,
) -> PaginatedResponse:
    """
    Articles published within the trailing window, best score first; ties
    go to the more recently published article.
    """
    page, limit = clamp_pagination(page, limit)
    now = utcnow()
    hours = window_hours if window_hours and window_hours > 0 else settings.TRENDING_WINDOW_HOURS
    hours = min(hours, MAX_TRENDING_WINDOW_HOURS)
    filters = [
        Article.status == ArticleStatus.PUBLISHED,
        Article.published_at.is_not(None),
        Article.published_at > now - timedelta(hours=hours),
    ]

    total = (
        await db.execute(select(func.count()).select_from(Article).where(*filters))
    ).scalar_one()

    score = trending_score(now).label("trending_score")
    q = (
        select(Article, score)
        .where(*filters)
        .options(*article_load_options())
        .order_by(desc(score), desc(Article.published_at), desc(Article.id))
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    rows = (await db.execute(q)).unique().all()

    articles = [row[0] for row in rows]
    items = await assemble_articles(db, articles, viewer_id)
    for item, row in zip(items, rows):
        item["trending_score"] = float(row[1])

    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )
