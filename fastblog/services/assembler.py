"""
Response assembly — joins articles with author metadata and the viewer's
personalised interaction flags.

Lists are assembled in batches: the page's authors arrive eagerly loaded,
and each interaction flag is one ``IN`` query over the whole page instead of
one query per article (N+1 prevention).  ``assemble_article`` is the
single-article case of the same code path.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fastblog.config import settings
from fastblog.content import share_description
from fastblog.models import Article, Bookmark, Clap, Follow, User


def _serialize_author(author: User) -> dict:
    return {
        "id": author.id,
        "username": author.username,
        "display_name": author.display_name,
        "avatar_url": author.avatar_url,
        "bio": author.bio,
        "followers_count": author.followers_count,
        "is_verified": author.is_verified,
    }


def _iso(value):
    return value.isoformat() if value else None


def share_url(slug: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/article/{slug}"


def article_to_dict(article: Article) -> dict:
    """Viewer-independent part of the article representation."""
    return {
        "id": article.id,
        "title": article.title,
        "subtitle": article.subtitle,
        "content": article.content,
        "content_html": article.content_html,
        "excerpt": article.excerpt,
        "featured_image_url": article.featured_image_url,
        "author": _serialize_author(article.author),
        "publication_id": article.publication_id,
        "status": article.status.value,
        "is_member_only": article.is_member_only,
        "paywall_position": article.paywall_position,
        "is_featured": article.is_featured,
        "slug": article.slug,
        "tags": [t.name for t in article.tags],
        "categories": [c.name for c in article.categories],
        "reading_time_minutes": article.reading_time_minutes,
        "claps_count": article.claps_count,
        "comments_count": article.comments_count,
        "bookmarks_count": article.bookmarks_count,
        "views_count": article.views_count,
        "reads_count": article.reads_count,
        "published_at": _iso(article.published_at),
        "created_at": _iso(article.created_at),
        "updated_at": _iso(article.updated_at),
        "last_auto_save": _iso(article.last_auto_save),
        "auto_save_version": article.auto_save_version,
        "share_url": share_url(article.slug),
        "share_title": article.title,
        "share_description": share_description(
            article.excerpt, article.subtitle, article.content_html
        ),
    }


async def _interaction_sets(
    db: AsyncSession, articles: list[Article], viewer_id: int
) -> tuple[set[int], set[int], set[int]]:
    article_ids = [a.id for a in articles]
    author_ids = {a.author_id for a in articles}

    clapped = await db.execute(
        select(Clap.article_id).where(Clap.user_id == viewer_id, Clap.article_id.in_(article_ids))
    )
    bookmarked = await db.execute(
        select(Bookmark.article_id).where(
            Bookmark.user_id == viewer_id, Bookmark.article_id.in_(article_ids)
        )
    )
    followed = await db.execute(
        select(Follow.following_id).where(
            Follow.follower_id == viewer_id, Follow.following_id.in_(author_ids)
        )
    )
    return set(clapped.scalars()), set(bookmarked.scalars()), set(followed.scalars())


async def assemble_articles(
    db: AsyncSession,
    articles: list[Article],
    viewer_id: int | None = None,
) -> list[dict]:
    """
    Return the external representation of *articles*.  Each article must have
    ``author``, ``tags`` and ``categories`` loaded.
    """
    if not articles:
        return []
    items = [article_to_dict(a) for a in articles]
    if viewer_id is None:
        for item in items:
            item["user_interactions"] = None
        return items

    clapped, bookmarked, followed = await _interaction_sets(db, articles, viewer_id)
    for article, item in zip(articles, items):
        has_clapped = article.id in clapped
        item["user_interactions"] = {
            "has_clapped": has_clapped,
            "clap_count": 1 if has_clapped else 0,
            "has_bookmarked": article.id in bookmarked,
            "is_following_author": article.author_id in followed,
        }
    return items


async def assemble_article(db: AsyncSession, article: Article, viewer_id: int | None = None) -> dict:
    return (await assemble_articles(db, [article], viewer_id))[0]
