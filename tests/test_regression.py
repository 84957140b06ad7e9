"""
Regression tests for issues found during code review.

1. Unique constraint violations must return 409 (not 500)
2. Slug collisions with a concurrent writer are retried, not surfaced
3. Listing cost must not grow with page size (no N+1 in assembly)
4. CORS must not set allow_credentials=true with allow_origins=*
5. The rate limiter rejects over-budget clients and fails open without Redis
6. Duplicate clap/bookmark inserts from concurrent requests are absorbed
7. Request ids are echoed back or generated
"""
import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from fastblog.errors import Conflict
from fastblog.models import Article, ArticleStatus, Clap, User, utcnow
from fastblog.ratelimit import RateLimiter
from fastblog.schemas import ArticleCreate
from fastblog.services import article_service, engagement_service, slug_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db_session: AsyncSession, username="reguser", email="reg@example.com"):
    user = User(username=username, email=email, display_name="Regression User")
    db_session.add(user)
    await db_session.flush()
    return user


def _article(author: User, title: str) -> Article:
    now = utcnow()
    return Article(
        title=title,
        content="body",
        content_html="<p>body</p>",
        author_id=author.id,
        status=ArticleStatus.DRAFT,
        created_at=now,
        updated_at=now,
    )


# ---------------------------------------------------------------------------
# 1. Unique constraint violations -> 409
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_duplicate_user_returns_409(async_client: AsyncClient):
    payload = {"username": "dup_user", "email": "dup1@example.com"}
    resp1 = await async_client.post("/api/v1/users", json=payload)
    assert resp1.status_code == 201

    payload2 = {"username": "dup_user", "email": "dup2@example.com"}
    resp2 = await async_client.post("/api/v1/users", json=payload2)
    assert resp2.status_code == 409
    assert resp2.json()["error"] == "conflict"


@pytest.mark.asyncio
async def test_duplicate_email_returns_409(async_client: AsyncClient):
    await async_client.post("/api/v1/users", json={
        "username": "emailuser1", "email": "same@example.com",
    })
    resp = await async_client.post("/api/v1/users", json={
        "username": "emailuser2", "email": "same@example.com",
    })
    assert resp.status_code == 409


# ---------------------------------------------------------------------------
# 2. Slug races
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_slug_collision_is_retried(db_session: AsyncSession, monkeypatch):
    """
    Simulate a writer that took the slug between our check and our INSERT:
    the first allocation returns an already-used slug.
    """
    author = await _create_user(db_session)
    await slug_service.insert_with_unique_slug(db_session, _article(author, "Race"), "Race")

    real_allocate = slug_service.allocate_slug
    calls = []

    async def stale_allocate(db, title, exclude_id=None, fallback="article"):
        calls.append(title)
        if len(calls) == 1:
            return "race"
        return await real_allocate(db, title, exclude_id, fallback)

    monkeypatch.setattr(slug_service, "allocate_slug", stale_allocate)

    article = await slug_service.insert_with_unique_slug(db_session, _article(author, "Race"), "Race")
    assert article.slug == "race-1"
    assert article.id is not None
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_slug_retries_are_bounded(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session)
    await slug_service.insert_with_unique_slug(db_session, _article(author, "Stuck"), "Stuck")

    async def always_taken(db, title, exclude_id=None, fallback="article"):
        return "stuck"

    monkeypatch.setattr(slug_service, "allocate_slug", always_taken)

    with pytest.raises(Conflict):
        await slug_service.insert_with_unique_slug(db_session, _article(author, "Stuck"), "Stuck")


# ---------------------------------------------------------------------------
# 3. Query count independent of page size
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_query_count_does_not_grow_with_items(async_client: AsyncClient, auth_headers):
    author = (await async_client.post("/api/v1/users", json={
        "username": "qctest", "email": "qctest@example.com",
    })).json()
    reader = (await async_client.post("/api/v1/users", json={
        "username": "qcreader", "email": "qcreader@example.com",
    })).json()

    async def list_cost() -> int:
        resp = await async_client.get("/api/v1/articles", headers=auth_headers(reader))
        assert resp.status_code == 200
        return int(resp.headers["x-query-count"])

    await async_client.post("/api/v1/articles", json={
        "title": "QC 0", "content": "c", "status": "published", "tags": ["a"],
    }, headers=auth_headers(author))
    single = await list_cost()

    for i in range(1, 6):
        await async_client.post("/api/v1/articles", json={
            "title": f"QC {i}", "content": "c", "status": "published", "tags": ["a", f"t{i}"],
        }, headers=auth_headers(author))
    assert await list_cost() == single


# ---------------------------------------------------------------------------
# 4. CORS headers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cors_no_credentials_with_wildcard_origin(async_client: AsyncClient):
    resp = await async_client.options(
        "/api/v1/articles",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "GET",
        },
    )
    cred_header = resp.headers.get("access-control-allow-credentials", "").lower()
    assert cred_header != "true"


# ---------------------------------------------------------------------------
# 5. Rate limiting
# ---------------------------------------------------------------------------

class _CountingRedis:
    """In-memory stand-in exposing the two commands the limiter uses."""

    def __init__(self):
        self.counts = {}
        self.expiries = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds


def _request(host: str = "10.0.0.1") -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/api/v1/articles",
        "headers": [],
        "client": (host, 1234),
    })


@pytest.mark.asyncio
async def test_rate_limiter_rejects_over_budget():
    limiter = RateLimiter(max_requests=2, window_seconds=30)
    limiter._redis = _CountingRedis()

    await limiter(_request())
    await limiter(_request())
    with pytest.raises(HTTPException) as excinfo:
        await limiter(_request())
    assert excinfo.value.status_code == 429
    assert excinfo.value.headers["Retry-After"] == "30"
    assert limiter._redis.expiries == {"ratelimit:10.0.0.1": 30}
    assert limiter.stats["rejected"] == 1

    # Budgets are per client.
    await limiter(_request("10.0.0.2"))


@pytest.mark.asyncio
async def test_rate_limiter_fails_open_without_redis():
    limiter = RateLimiter(max_requests=1, window_seconds=30)
    for _ in range(5):
        assert await limiter.hit("anyone") is True
    assert limiter.stats["enabled"] is False


# ---------------------------------------------------------------------------
# 6. Slug re-checks and toggle races
# ---------------------------------------------------------------------------

async def _published_article(db_session: AsyncSession, author: User, title: str = "Contested") -> dict:
    return await article_service.create_article(
        db_session, author.id,
        ArticleCreate(title=title, content="<p>body</p>", status=ArticleStatus.PUBLISHED),
    )


@pytest.mark.asyncio
async def test_allocate_slug_keeps_own_slug_when_excluded(db_session: AsyncSession):
    author = await _create_user(db_session)
    article = await _published_article(db_session, author, "Stable Title")

    assert await slug_service.allocate_slug(db_session, "Stable Title", exclude_id=article["id"]) == "stable-title"
    assert await slug_service.allocate_slug(db_session, "Stable Title") == "stable-title-1"


@pytest.mark.asyncio
async def test_concurrent_duplicate_clap_is_absorbed(db_session: AsyncSession, monkeypatch):
    """
    Simulate a second request that checked for a clap before the first one
    inserted it: the lookup is stale, the INSERT hits the unique constraint.
    """
    author = await _create_user(db_session)
    fan = await _create_user(db_session, "racefan", "racefan@example.com")
    article = await _published_article(db_session, author)
    await engagement_service.toggle_clap(db_session, fan.id, article["id"])

    real_lookup = engagement_service._user_clap
    calls = []

    async def stale_lookup(db, user_id, article_id):
        calls.append(user_id)
        if len(calls) == 1:
            return None
        return await real_lookup(db, user_id, article_id)

    monkeypatch.setattr(engagement_service, "_user_clap", stale_lookup)

    result = await engagement_service.toggle_clap(db_session, fan.id, article["id"])
    assert result["claps_count"] == 1
    assert result["has_clapped"] is True
    claps = (await db_session.execute(select(func.count()).select_from(Clap))).scalar_one()
    assert claps == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_bookmark_is_absorbed(db_session: AsyncSession, monkeypatch):
    author = await _create_user(db_session)
    reader = await _create_user(db_session, "racereader", "racereader@example.com")
    article = await _published_article(db_session, author)
    first = await engagement_service.bookmark_article(db_session, reader.id, article["id"])
    assert first == {"bookmarked": True, "changed": True, "bookmarks_count": 1}

    real_check = engagement_service._has_bookmark
    calls = []

    async def stale_check(db, user_id, article_id):
        calls.append(user_id)
        if len(calls) == 1:
            return False
        return await real_check(db, user_id, article_id)

    monkeypatch.setattr(engagement_service, "_has_bookmark", stale_check)

    result = await engagement_service.bookmark_article(db_session, reader.id, article["id"])
    assert result == {"bookmarked": True, "changed": False, "bookmarks_count": 1}


# ---------------------------------------------------------------------------
# 7. Request ids
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated(async_client: AsyncClient):
    resp = await async_client.get("/health", headers={"X-Request-ID": "trace-123"})
    assert resp.headers["x-request-id"] == "trace-123"

    resp = await async_client.get("/health")
    assert len(resp.headers["x-request-id"]) == 32
