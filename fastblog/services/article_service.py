"""
Article service — lifecycle of the Article aggregate.

Design notes
------------
- State-changing operations that must be guarded (auto-save, publish,
  delete) are single conditional statements whose WHERE clause carries the
  guard (owner, status).  Zero affected rows means the guard failed; the
  reason (missing, foreign, wrong state) is deliberately not distinguished.
- ``update_article`` reads ownership first so it can tell NotFound from
  Unauthorized; the HTTP layer still reports both as "not found".
- Reads use ``joinedload`` for the author (many-to-one) and
  ``selectinload`` for tags/categories; ``unique()`` is required after
  ``joinedload``.  ``populate_existing`` makes reloads after a bulk UPDATE
  see fresh column values instead of the identity map's stale copy.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency.
"""
import logging
import math

from sqlalchemy import delete, desc, func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from fastblog.content import derive_excerpt, reading_time, sanitize_html
from fastblog.dependencies import clamp_pagination
from fastblog.errors import NotFound, Unauthorized
from fastblog.models import Article, ArticleStatus, Category, Tag, User, utcnow
from fastblog.schemas import ArticleCreate, ArticleUpdate, AutoSaveRequest, PaginatedResponse
from fastblog.services.assembler import assemble_article, assemble_articles
from fastblog.services.slug_service import insert_with_unique_slug

logger = logging.getLogger(__name__)

# Sort keys accepted by listings; anything else falls back to created_at.
_SORT_COLUMNS = {
    "recent": Article.created_at,
    "published": Article.published_at,
    "popular": Article.views_count,
    "claps": Article.claps_count,
}

# Update statements below are guarded by their WHERE clause and reloaded
# afterwards, so the ORM does not need to synchronise the identity map.
_NO_SYNC = {"synchronize_session": False}


# ---------------------------------------------------------------------------
# Query helpers (shared with the ranking services)
# ---------------------------------------------------------------------------

def article_load_options() -> list:
    return [
        joinedload(Article.author),
        selectinload(Article.tags),
        selectinload(Article.categories),
    ]


def visible_to(viewer_id: int | None):
    """Published articles are public; everything else only to its author."""
    if viewer_id is None:
        return Article.status == ArticleStatus.PUBLISHED
    return or_(Article.status == ArticleStatus.PUBLISHED, Article.author_id == viewer_id)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total > 0 else 0


async def load_article(db: AsyncSession, article_id: int) -> Article | None:
    q = (
        select(Article)
        .where(Article.id == article_id)
        .options(*article_load_options())
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def paginate_articles(
    db: AsyncSession,
    filters: list,
    order_by: list,
    page: int,
    limit: int,
    viewer_id: int | None = None,
) -> PaginatedResponse:
    """
    Two statements: COUNT over *filters*, then the page itself with
    eager-loaded author/tags/categories; items are assembled for *viewer_id*.
    """
    page, limit = clamp_pagination(page, limit)

    count_q = select(func.count()).select_from(Article).where(*filters)
    total: int = (await db.execute(count_q)).scalar_one()

    q = (
        select(Article)
        .where(*filters)
        .options(*article_load_options())
        .order_by(*order_by)
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    articles = list(result.unique().scalars().all())

    return PaginatedResponse(
        items=await assemble_articles(db, articles, viewer_id),
        total=total,
        page=page,
        limit=limit,
        pages=page_count(total, limit),
    )


async def _resolve_names(db: AsyncSession, model, names: list[str]) -> list:
    """
    Return ``Tag``/``Category`` rows for *names*, creating missing ones in
    the caller's transaction.  Blank and repeated names are dropped.
    """
    rows = []
    seen: set[str] = set()
    for raw in names:
        name = raw.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        result = await db.execute(select(model).where(model.name == name))
        row = result.scalar_one_or_none()
        if row is None:
            row = model(name=name)
            db.add(row)
            await db.flush()
        rows.append(row)
    return rows


async def _replace_terms(
    db: AsyncSession, article: Article, tags: list[str] | None, categories: list[str] | None
) -> None:
    if tags is not None:
        article.tags = await _resolve_names(db, Tag, tags)
    if categories is not None:
        article.categories = await _resolve_names(db, Category, categories)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def create_article(db: AsyncSession, author_id: int, data: ArticleCreate) -> dict:
    """
    Create an article owned by *author_id* and return its assembled view.

    Content is sanitised, reading time and (when absent) the excerpt are
    derived, and ``published_at`` is set only when created as published.
    """
    content_html = sanitize_html(data.content)
    now = utcnow()
    article = Article(
        title=data.title,
        subtitle=data.subtitle,
        content=data.content,
        content_html=content_html,
        excerpt=data.excerpt or derive_excerpt(content_html),
        featured_image_url=data.featured_image_url,
        publication_id=data.publication_id,
        author_id=author_id,
        status=data.status,
        is_member_only=data.is_member_only,
        paywall_position=data.paywall_position,
        reading_time_minutes=reading_time(content_html),
        published_at=now if data.status == ArticleStatus.PUBLISHED else None,
        created_at=now,
        updated_at=now,
        last_auto_save=now,
        auto_save_version=1,
    )
    article.tags.extend(await _resolve_names(db, Tag, data.tags))
    article.categories.extend(await _resolve_names(db, Category, data.categories))

    await insert_with_unique_slug(db, article, data.title)
    logger.info(
        "Created %s article %d (%s) for author %d",
        article.status.value, article.id, article.slug, author_id,
    )
    return await assemble_article(db, await load_article(db, article.id), author_id)


async def auto_save_draft(db: AsyncSession, author_id: int, data: AutoSaveRequest) -> dict:
    """
    Persist an editor snapshot.

    With ``article_id``: merge the supplied fields into the caller's draft
    (content always overwrites) and bump ``auto_save_version`` by one.  The
    draft guard lives in the UPDATE's WHERE clause, so a published, foreign
    or missing article affects no rows and raises NotFound.

    Without ``article_id``: mint a new draft whose slug derives from "draft".
    """
    now = utcnow()
    content_html = sanitize_html(data.content)

    if data.article_id is None:
        article = Article(
            title=data.title or "",
            subtitle=data.subtitle,
            content=data.content,
            content_html=content_html,
            excerpt=data.excerpt,
            featured_image_url=data.featured_image_url,
            author_id=author_id,
            status=ArticleStatus.DRAFT,
            is_member_only=bool(data.is_member_only),
            paywall_position=data.paywall_position,
            reading_time_minutes=reading_time(content_html),
            created_at=now,
            updated_at=now,
            last_auto_save=now,
            auto_save_version=1,
        )
        article.tags.extend(await _resolve_names(db, Tag, data.tags or []))
        article.categories.extend(await _resolve_names(db, Category, data.categories or []))
        await insert_with_unique_slug(db, article, "draft", fallback="draft")
        logger.info("Auto-save minted draft %d for author %d", article.id, author_id)
    else:
        values = {
            "content": data.content,
            "content_html": content_html,
            "reading_time_minutes": reading_time(content_html),
            "updated_at": now,
            "last_auto_save": now,
            "auto_save_version": Article.auto_save_version + 1,
        }
        for field in ("title", "subtitle", "excerpt", "featured_image_url",
                      "is_member_only", "paywall_position"):
            value = getattr(data, field)
            if value is not None:
                values[field] = value

        stmt = (
            update(Article)
            .where(
                Article.id == data.article_id,
                Article.author_id == author_id,
                Article.status == ArticleStatus.DRAFT,
            )
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise NotFound("Draft not found")

        article = await load_article(db, data.article_id)
        if data.tags is not None or data.categories is not None:
            await _replace_terms(db, article, data.tags, data.categories)
            await db.flush()

    return {
        "article_id": article.id,
        "slug": article.slug,
        "auto_save_version": article.auto_save_version,
        "last_auto_save": article.last_auto_save,
    }


async def update_article(
    db: AsyncSession, author_id: int, article_id: int, data: ArticleUpdate
) -> dict:
    """
    Partially update an article owned by *author_id*.

    Only fields present in the payload change.  New content is re-sanitised
    and its reading time recomputed.  The slug is never re-minted.
    """
    owner = (
        await db.execute(select(Article.author_id).where(Article.id == article_id))
    ).scalar_one_or_none()
    if owner is None:
        raise NotFound("Article not found")
    if owner != author_id:
        raise Unauthorized(f"User {author_id} may not update article {article_id}")

    article = await load_article(db, article_id)
    update_data = data.model_dump(exclude_unset=True)
    tags = update_data.pop("tags", None)
    categories = update_data.pop("categories", None)
    content = update_data.pop("content", None)

    for field, value in update_data.items():
        if value is None and field in ("title", "is_member_only"):
            continue  # non-nullable columns
        setattr(article, field, value)

    if content is not None:
        article.content = content
        article.content_html = sanitize_html(content)
        article.reading_time_minutes = reading_time(article.content_html)

    await _replace_terms(db, article, tags, categories)
    article.updated_at = utcnow()
    await db.flush()

    return await assemble_article(db, await load_article(db, article_id), author_id)


async def publish_article(db: AsyncSession, author_id: int, article_id: int) -> dict:
    """
    Draft -> Published, exactly once.  ``published_at`` is written by the
    same conditional UPDATE, so a repeated call cannot move it.
    """
    now = utcnow()
    stmt = (
        update(Article)
        .where(
            Article.id == article_id,
            Article.author_id == author_id,
            Article.status == ArticleStatus.DRAFT,
        )
        .values(status=ArticleStatus.PUBLISHED, published_at=now, updated_at=now)
        .execution_options(**_NO_SYNC)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise NotFound("Article not found, unauthorized, or already published")

    logger.info("Published article %d by author %d", article_id, author_id)
    return await assemble_article(db, await load_article(db, article_id), author_id)


async def delete_article(db: AsyncSession, author_id: int, article_id: int) -> None:
    stmt = (
        delete(Article)
        .where(Article.id == article_id, Article.author_id == author_id)
        .execution_options(**_NO_SYNC)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise NotFound("Article not found or unauthorized")
    logger.info("Deleted article %d by author %d", article_id, author_id)


async def _bump_counter(db: AsyncSession, article_id: int, column) -> int:
    stmt = (
        update(Article)
        .where(Article.id == article_id)
        .values({column: column + 1})
        .execution_options(**_NO_SYNC)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise NotFound("Article not found")
    return (await db.execute(select(column).where(Article.id == article_id))).scalar_one()


async def record_view(db: AsyncSession, article_id: int) -> dict:
    """Count one view.  Repeat views by the same reader are counted again."""
    return {"views_count": await _bump_counter(db, article_id, Article.views_count)}


async def record_read(db: AsyncSession, article_id: int) -> dict:
    """Count one completed read; no per-reader deduplication."""
    return {"reads_count": await _bump_counter(db, article_id, Article.reads_count)}


async def toggle_featured(db: AsyncSession, user_id: int, article_id: int) -> dict:
    """Flip the editorial ``is_featured`` flag.  Staff only."""
    is_staff = (
        await db.execute(select(User.is_staff).where(User.id == user_id))
    ).scalar_one_or_none()
    if not is_staff:
        raise Unauthorized(f"User {user_id} may not feature articles")

    stmt = (
        update(Article)
        .where(Article.id == article_id)
        .values(is_featured=not_(Article.is_featured), updated_at=utcnow())
        .execution_options(**_NO_SYNC)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        raise NotFound("Article not found")

    featured = (
        await db.execute(select(Article.is_featured).where(Article.id == article_id))
    ).scalar_one()
    logger.info("User %d set featured=%s on article %d", user_id, featured, article_id)
    return {"article_id": article_id, "is_featured": featured}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_article(db: AsyncSession, article_id: int, viewer_id: int | None = None) -> dict:
    q = (
        select(Article)
        .where(Article.id == article_id, visible_to(viewer_id))
        .options(*article_load_options())
        .execution_options(populate_existing=True)
    )
    article = (await db.execute(q)).unique().scalar_one_or_none()
    if article is None:
        raise NotFound("Article not found")
    return await assemble_article(db, article, viewer_id)


async def get_article_by_slug(db: AsyncSession, slug: str, viewer_id: int | None = None) -> dict:
    q = (
        select(Article)
        .where(Article.slug == slug, visible_to(viewer_id))
        .options(*article_load_options())
        .execution_options(populate_existing=True)
    )
    article = (await db.execute(q)).unique().scalar_one_or_none()
    if article is None:
        raise NotFound("Article not found")
    return await assemble_article(db, article, viewer_id)


async def get_articles(
    db: AsyncSession,
    page: int = 1,
    limit: int = 20,
    sort: str = "recent",
    author_id: int | None = None,
    tag: str | None = None,
    category: str | None = None,
    viewer_id: int | None = None,
) -> PaginatedResponse:
    """Published articles, optionally narrowed to one author, tag or category."""
    filters = [Article.status == ArticleStatus.PUBLISHED]
    if author_id is not None:
        filters.append(Article.author_id == author_id)
    if tag:
        filters.append(Article.tags.any(Tag.name == tag))
    if category:
        filters.append(Article.categories.any(Category.name == category))

    sort_col = _SORT_COLUMNS.get(sort, Article.created_at)
    return await paginate_articles(
        db, filters, [desc(sort_col), desc(Article.id)], page, limit, viewer_id
    )


async def get_drafts(db: AsyncSession, author_id: int, page: int = 1, limit: int = 20) -> PaginatedResponse:
    filters = [Article.author_id == author_id, Article.status == ArticleStatus.DRAFT]
    return await paginate_articles(
        db, filters, [desc(Article.updated_at), desc(Article.id)], page, limit, author_id
    )


async def get_featured(
    db: AsyncSession, page: int = 1, limit: int = 20, viewer_id: int | None = None
) -> PaginatedResponse:
    filters = [Article.status == ArticleStatus.PUBLISHED, Article.is_featured.is_(True)]
    return await paginate_articles(
        db, filters, [desc(Article.published_at), desc(Article.id)], page, limit, viewer_id
    )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def _engagement_rate(reads: int, views: int) -> float:
    return (reads / views) * 100.0 if views > 0 else 0.0


def _stats_dict(article) -> dict:
    return {
        "article_id": article.id,
        "title": article.title,
        "views_count": article.views_count,
        "reads_count": article.reads_count,
        "claps_count": article.claps_count,
        "comments_count": article.comments_count,
        "bookmarks_count": article.bookmarks_count,
        "reading_time_minutes": article.reading_time_minutes,
        "published_at": article.published_at.isoformat() if article.published_at else None,
        "engagement_rate": _engagement_rate(article.reads_count, article.views_count),
    }


async def get_article_stats(db: AsyncSession, article_id: int, viewer_id: int | None = None) -> dict:
    q = (
        select(Article)
        .where(Article.id == article_id, visible_to(viewer_id))
        .execution_options(populate_existing=True)
    )
    article = (await db.execute(q)).scalar_one_or_none()
    if article is None:
        raise NotFound("Article not found")
    return _stats_dict(article)


async def get_author_stats(db: AsyncSession, author_id: int) -> dict:
    """Aggregate engagement over the author's published articles."""
    published = [Article.author_id == author_id, Article.status == ArticleStatus.PUBLISHED]
    totals = (
        await db.execute(
            select(
                func.count(Article.id),
                func.coalesce(func.sum(Article.views_count), 0),
                func.coalesce(func.sum(Article.reads_count), 0),
                func.coalesce(func.sum(Article.claps_count), 0),
                func.coalesce(func.sum(Article.comments_count), 0),
                func.coalesce(func.sum(Article.bookmarks_count), 0),
                func.coalesce(func.avg(Article.reading_time_minutes), 0.0),
            ).where(*published)
        )
    ).one()
    articles, views, reads, claps, comments, bookmarks, avg_reading = totals

    top = await db.execute(
        select(Article)
        .where(*published)
        .order_by(desc(Article.views_count), desc(Article.id))
        .limit(5)
        .execution_options(populate_existing=True)
    )
    return {
        "total_articles": int(articles),
        "total_views": int(views),
        "total_reads": int(reads),
        "total_claps": int(claps),
        "total_comments": int(comments),
        "total_bookmarks": int(bookmarks),
        "average_reading_time": float(avg_reading),
        "average_engagement_rate": _engagement_rate(int(reads), int(views)),
        "top_articles": [_stats_dict(a) for a in top.scalars().all()],
    }
