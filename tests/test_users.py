"""
User endpoint tests — covers creating users, listing users, fetching user
detail, the follow graph, author statistics and the metrics endpoint.

The metrics endpoint is tested here because it aggregates across users,
articles, and comments and is simpler to exercise once user and article
creation is established.
"""
import pytest
from httpx import AsyncClient


async def _create_user(client: AsyncClient, username: str) -> dict:
    resp = await client.post("/api/v1/users", json={
        "username": username,
        "email": f"{username}@example.com",
    })
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Create user
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user(async_client: AsyncClient):
    """Creating a user with all fields returns 201 and all provided data."""
    resp = await async_client.post("/api/v1/users", json={
        "username": "newuser",
        "email": "newuser@example.com",
        "display_name": "New User",
        "bio": "I am new here",
    })
    assert resp.status_code == 201
    user = resp.json()
    assert user["username"] == "newuser"
    assert user["email"] == "newuser@example.com"
    assert user["display_name"] == "New User"
    assert user["bio"] == "I am new here"
    assert user["followers_count"] == 0
    assert user["following_count"] == 0
    assert "id" in user
    assert "created_at" in user


@pytest.mark.asyncio
async def test_create_user_minimal_fields(async_client: AsyncClient):
    """Creating a user with only required fields (username + email) returns 201."""
    resp = await async_client.post("/api/v1/users", json={
        "username": "minimal",
        "email": "minimal@example.com",
    })
    assert resp.status_code == 201
    user = resp.json()
    assert user["username"] == "minimal"
    assert user["display_name"] is None
    assert user["bio"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"email": "nousername@example.com"},
    {"username": "noemail"},
    {"username": "", "email": "empty@example.com"},
])
async def test_create_user_validation(async_client: AsyncClient, payload):
    resp = await async_client.post("/api/v1/users", json=payload)
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Read users
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_users_newest_first(async_client: AsyncClient):
    for name in ("first", "second", "third"):
        await _create_user(async_client, name)

    resp = await async_client.get("/api/v1/users", params={"limit": 2})
    assert resp.status_code == 200
    assert [u["username"] for u in resp.json()] == ["third", "second"]


@pytest.mark.asyncio
async def test_get_user(async_client: AsyncClient):
    created = await _create_user(async_client, "detail")
    resp = await async_client.get(f"/api/v1/users/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["username"] == "detail"


@pytest.mark.asyncio
async def test_get_user_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/users/99999")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_follow_and_unfollow_are_idempotent(async_client: AsyncClient, auth_headers):
    fan = await _create_user(async_client, "fan")
    star = await _create_user(async_client, "star")
    url = f"/api/v1/users/{star['id']}/follow"

    resp = await async_client.post(url, headers=auth_headers(fan))
    assert resp.json() == {"following": True, "changed": True, "followers_count": 1}
    resp = await async_client.post(url, headers=auth_headers(fan))
    assert resp.json() == {"following": True, "changed": False, "followers_count": 1}

    fan_after = (await async_client.get(f"/api/v1/users/{fan['id']}")).json()
    assert fan_after["following_count"] == 1

    resp = await async_client.delete(url, headers=auth_headers(fan))
    assert resp.json() == {"following": False, "changed": True, "followers_count": 0}
    resp = await async_client.delete(url, headers=auth_headers(fan))
    assert resp.json() == {"following": False, "changed": False, "followers_count": 0}

    fan_after = (await async_client.get(f"/api/v1/users/{fan['id']}")).json()
    assert fan_after["following_count"] == 0


@pytest.mark.asyncio
async def test_cannot_follow_self(async_client: AsyncClient, auth_headers):
    me = await _create_user(async_client, "narcissus")
    resp = await async_client.post(f"/api/v1/users/{me['id']}/follow", headers=auth_headers(me))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_follow_requires_auth_and_target(async_client: AsyncClient, auth_headers):
    fan = await _create_user(async_client, "lonely")
    resp = await async_client.post(f"/api/v1/users/{fan['id']}/follow")
    assert resp.status_code == 401

    resp = await async_client.post("/api/v1/users/99999/follow", headers=auth_headers(fan))
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Author statistics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_author_stats_endpoint(async_client: AsyncClient, auth_headers):
    author = await _create_user(async_client, "statsauthor")
    created = await async_client.post("/api/v1/articles", json={
        "title": "Counted", "content": "<p>words</p>", "status": "published",
    }, headers=auth_headers(author))
    article_id = created.json()["id"]
    await async_client.post(f"/api/v1/articles/{article_id}/view")

    resp = await async_client.get(f"/api/v1/users/{author['id']}/stats")
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["total_articles"] == 1
    assert stats["total_views"] == 1
    assert stats["top_articles"][0]["article_id"] == article_id

    resp = await async_client.get("/api/v1/users/99999/stats")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_metrics_endpoint(async_client: AsyncClient, auth_headers):
    """Metrics reflect correct counts after creating users, articles and comments."""
    author = await _create_user(async_client, "metricsuser")
    reader = await _create_user(async_client, "metricsreader")

    published = await async_client.post("/api/v1/articles", json={
        "title": "Metrics Article", "content": "Content", "status": "published",
    }, headers=auth_headers(author))
    await async_client.post("/api/v1/articles", json={
        "title": "Metrics Draft", "content": "Content",
    }, headers=auth_headers(author))
    await async_client.post(f"/api/v1/articles/{published.json()['id']}/comments", json={
        "content": "Nice",
    }, headers=auth_headers(reader))

    resp = await async_client.get("/api/v1/metrics")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_users"] == 2
    assert data["total_articles"] == 2
    assert data["published_articles"] == 1
    assert data["total_comments"] == 1
    assert data["avg_comments_per_article"] == 1.0
    assert data["rate_limit_info"]["enabled"] is False
