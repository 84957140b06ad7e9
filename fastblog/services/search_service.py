"""
Search service — keyword relevance ranking for articles and users.

Design notes
------------
- Relevance is computed in SQL as a sum of ``CASE`` terms.  Each searchable
  column is tested against four patterns derived from the lowercased query:

      exact     %q%          anywhere in the column
      word      % q %        surrounded by spaces
      prefix    q%           at the start of the column
      multi     %w1%w2%...   every word, in order (bonus tier)

  and each hit adds the column's weight for that tier.  Rows scoring zero
  are excluded.
- User input is LIKE-escaped before it is embedded in a pattern, so ``%``
  and ``_`` in a query match literally.
- Nothing is indexed ahead of time; every call re-scores current rows.
"""
from sqlalchemy import case, desc, distinct, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from fastblog.content import escape_like, highlight_excerpt, strip_tags
from fastblog.dependencies import clamp_pagination
from fastblog.models import Article, ArticleStatus, User
from fastblog.schemas import SearchSort

SUGGESTION_LIMIT = 10
SUGGESTIONS_PER_SOURCE = 5

# (exact, word, prefix) weights per column
ARTICLE_WEIGHTS = {
    "title": (15, 12, 10),
    "subtitle": (8, 6, 5),
    "content": (6, 4, 2),
}
ARTICLE_AUTHOR_WEIGHTS = {"username": 5, "display_name": 5, "bio": 3}
ARTICLE_MULTI_WORD_BONUS = {"title": 3, "content": 2}

USER_WEIGHTS = {
    "username": (15, 12, 10),
    "display_name": (12, 10, 8),
    "bio": (8, 6, 4),
}
USER_MULTI_WORD_BONUS = {"username": 3, "display_name": 3, "bio": 2}


class SearchPatterns:
    """LIKE patterns for one query string."""

    def __init__(self, query: str) -> None:
        term = escape_like(query.strip().lower())
        words = [escape_like(w) for w in query.lower().split()]
        self.exact = f"%{term}%"
        self.word = f"% {term} %"
        self.prefix = f"{term}%"
        self.multi = f"%{'%'.join(words)}%"


def _hit(column, pattern: str, weight: int):
    return case((func.lower(column).like(pattern, escape="\\"), weight), else_=0)


def _tiered(column, patterns: SearchPatterns, weights: tuple[int, int, int]):
    exact, word, prefix = weights
    return (
        _hit(column, patterns.exact, exact)
        + _hit(column, patterns.word, word)
        + _hit(column, patterns.prefix, prefix)
    )


def article_relevance(patterns: SearchPatterns):
    """Relevance expression for an ``Article`` joined to its author ``User``."""
    score = literal(0)
    for name, weights in ARTICLE_WEIGHTS.items():
        score = score + _tiered(getattr(Article, name), patterns, weights)
    for name, weight in ARTICLE_AUTHOR_WEIGHTS.items():
        score = score + _hit(getattr(User, name), patterns.exact, weight)
    for name, weight in ARTICLE_MULTI_WORD_BONUS.items():
        score = score + _hit(getattr(Article, name), patterns.multi, weight)
    return score


def user_relevance(patterns: SearchPatterns):
    score = literal(0)
    for name, weights in USER_WEIGHTS.items():
        score = score + _tiered(getattr(User, name), patterns, weights)
    for name, weight in USER_MULTI_WORD_BONUS.items():
        score = score + _hit(getattr(User, name), patterns.multi, weight)
    return score


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------

_ARTICLE_SORTS = {
    SearchSort.RECENT: lambda score: [Article.published_at.desc().nulls_last()],
    SearchSort.POPULAR: lambda score: [desc(Article.views_count)],
    SearchSort.CLAPS: lambda score: [desc(Article.claps_count)],
}


def _search_article_to_dict(article: Article, score, query: str) -> dict:
    author = article.author
    return {
        "id": article.id,
        "title": article.title,
        "subtitle": article.subtitle,
        "excerpt": highlight_excerpt(strip_tags(article.content_html), query.strip()),
        "slug": article.slug,
        "author": {
            "id": author.id,
            "username": author.username,
            "display_name": author.display_name,
            "avatar_url": author.avatar_url,
        },
        "tags": [t.name for t in article.tags],
        "claps_count": article.claps_count,
        "views_count": article.views_count,
        "reading_time_minutes": article.reading_time_minutes,
        "published_at": article.published_at.isoformat() if article.published_at else None,
        "relevance_score": float(score),
    }


async def search_articles(
    db: AsyncSession,
    query: str,
    page: int = 1,
    limit: int = 20,
    sort: SearchSort = SearchSort.RELEVANCE,
) -> list[dict]:
    """
    Published articles matching *query*, best match first unless *sort*
    asks for recency, views or claps.
    """
    if not query.strip():
        return []
    page, limit = clamp_pagination(page, limit)
    relevance = article_relevance(SearchPatterns(query))
    score = relevance.label("relevance_score")

    order_by = _ARTICLE_SORTS.get(sort, lambda s: [desc(s)])(score)
    q = (
        select(Article, score)
        .join(User, Article.author_id == User.id)
        .where(Article.status == ArticleStatus.PUBLISHED, relevance > 0)
        .options(contains_eager(Article.author), selectinload(Article.tags))
        .order_by(*order_by, desc(Article.published_at), desc(Article.id))
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    rows = (await db.execute(q)).unique().all()
    return [_search_article_to_dict(article, s, query) for article, s in rows]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

_USER_SORTS = {
    SearchSort.RECENT: lambda score: [desc(User.created_at)],
    SearchSort.POPULAR: lambda score: [desc(User.followers_count)],
}


async def search_users(
    db: AsyncSession,
    query: str,
    page: int = 1,
    limit: int = 20,
    sort: SearchSort = SearchSort.RELEVANCE,
) -> list[dict]:
    """Users matching *query* by username, display name or bio."""
    if not query.strip():
        return []
    page, limit = clamp_pagination(page, limit)
    relevance = user_relevance(SearchPatterns(query))
    score = relevance.label("relevance_score")
    articles_count = (
        select(func.count(Article.id))
        .where(Article.author_id == User.id, Article.status == ArticleStatus.PUBLISHED)
        .correlate(User)
        .scalar_subquery()
        .label("articles_count")
    )

    order_by = _USER_SORTS.get(sort, lambda s: [desc(s)])(score)
    q = (
        select(User, score, articles_count)
        .where(relevance > 0)
        .order_by(*order_by, desc(User.id))
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    rows = (await db.execute(q)).all()
    return [
        {
            "id": user.id,
            "username": user.username,
            "display_name": user.display_name,
            "bio": user.bio,
            "avatar_url": user.avatar_url,
            "followers_count": user.followers_count,
            "articles_count": int(count),
            "is_verified": user.is_verified,
            "relevance_score": float(s),
        }
        for user, s, count in rows
    ]


# ---------------------------------------------------------------------------
# Suggestions / global
# ---------------------------------------------------------------------------

async def get_suggestions(db: AsyncSession, query: str) -> list[str]:
    """Up to five article titles and five user names containing *query*, A-Z."""
    if not query.strip():
        return []
    pattern = f"%{escape_like(query.strip().lower())}%"

    titles = await db.execute(
        select(distinct(Article.title))
        .where(
            func.lower(Article.title).like(pattern, escape="\\"),
            Article.status == ArticleStatus.PUBLISHED,
        )
        .limit(SUGGESTIONS_PER_SOURCE)
    )
    name = func.coalesce(User.display_name, User.username)
    names = await db.execute(
        select(distinct(name))
        .where(
            func.lower(User.username).like(pattern, escape="\\")
            | func.lower(User.display_name).like(pattern, escape="\\")
        )
        .limit(SUGGESTIONS_PER_SOURCE)
    )
    suggestions = list(titles.scalars()) + list(names.scalars())
    return sorted(suggestions)[:SUGGESTION_LIMIT]


async def global_search(
    db: AsyncSession,
    query: str,
    page: int = 1,
    limit: int = 20,
    sort: SearchSort = SearchSort.RELEVANCE,
) -> dict:
    articles = await search_articles(db, query, page, limit, sort)
    users = await search_users(db, query, page, limit, sort)
    return {
        "query": query,
        "total_results": len(articles) + len(users),
        "results": {"articles": articles, "users": users},
        "suggestions": await get_suggestions(db, query),
    }
