"""
Direct service-layer tests — exercises lifecycle rules without HTTP
overhead: auto-save versioning, ownership errors (which the HTTP layer
collapses into 404), editorial featuring and author statistics.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fastblog.errors import NotFound, Unauthorized
from fastblog.models import ArticleStatus, Clap, User
from fastblog.schemas import ArticleCreate, ArticleUpdate, AutoSaveRequest
from fastblog.services import article_service, engagement_service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(
    db: AsyncSession, username: str = "svcuser", is_staff: bool = False
) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        display_name="Service User",
        is_staff=is_staff,
    )
    db.add(user)
    await db.flush()
    return user


async def _create(db: AsyncSession, author: User, title: str = "Service Article", **fields) -> dict:
    fields.setdefault("content", "<p>Service content</p>")
    return await article_service.create_article(db, author.id, ArticleCreate(title=title, **fields))


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_articles_empty(db_session: AsyncSession):
    result = await article_service.get_articles(db_session)
    assert result.total == 0
    assert result.items == []
    assert result.pages == 0


@pytest.mark.asyncio
async def test_create_article_derives_fields(db_session: AsyncSession):
    user = await _create_user(db_session)
    long_text = " ".join(f"word{i}" for i in range(100))
    result = await _create(db_session, user, content=f"<p>{long_text}</p>")

    assert result["slug"] == "service-article"
    assert result["status"] == "draft"
    assert result["published_at"] is None
    assert result["excerpt"].endswith("...")
    assert len(result["excerpt"]) <= 203
    assert result["user_interactions"]["has_clapped"] is False


@pytest.mark.asyncio
async def test_explicit_excerpt_is_kept(db_session: AsyncSession):
    user = await _create_user(db_session)
    result = await _create(db_session, user, excerpt="Hand written")
    assert result["excerpt"] == "Hand written"
    assert result["share_description"] == "Hand written"


@pytest.mark.asyncio
async def test_get_articles_pagination(db_session: AsyncSession):
    user = await _create_user(db_session)
    for i in range(3):
        await _create(db_session, user, title=f"Article {i}", status=ArticleStatus.PUBLISHED)

    result = await article_service.get_articles(db_session, page=1, limit=2)
    assert result.total == 3
    assert len(result.items) == 2
    assert result.pages == 2

    result = await article_service.get_articles(db_session, page=2, limit=2)
    assert len(result.items) == 1


@pytest.mark.asyncio
async def test_get_articles_unknown_sort_falls_back(db_session: AsyncSession):
    user = await _create_user(db_session)
    await _create(db_session, user, status=ArticleStatus.PUBLISHED)
    result = await article_service.get_articles(db_session, sort="nonexistent_column")
    assert result.total == 1


@pytest.mark.asyncio
async def test_get_article_hides_drafts_from_others(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    other = await _create_user(db_session, "other")
    draft = await _create(db_session, author)

    with pytest.raises(NotFound):
        await article_service.get_article(db_session, draft["id"])
    with pytest.raises(NotFound):
        await article_service.get_article(db_session, draft["id"], other.id)
    assert (await article_service.get_article(db_session, draft["id"], author.id))["id"] == draft["id"]


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_distinguishes_missing_from_foreign(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    other = await _create_user(db_session, "other")
    created = await _create(db_session, author)

    with pytest.raises(NotFound):
        await article_service.update_article(db_session, author.id, 99999, ArticleUpdate(title="x"))
    with pytest.raises(Unauthorized):
        await article_service.update_article(db_session, other.id, created["id"], ArticleUpdate(title="x"))


@pytest.mark.asyncio
async def test_update_changes_only_supplied_fields(db_session: AsyncSession):
    user = await _create_user(db_session)
    created = await _create(db_session, user, subtitle="Keep me", tags=["old"])

    updated = await article_service.update_article(
        db_session, user.id, created["id"], ArticleUpdate(title="After Update", tags=["new-a", "new-b"])
    )
    assert updated["title"] == "After Update"
    assert updated["subtitle"] == "Keep me"
    assert updated["slug"] == "service-article"
    assert sorted(updated["tags"]) == ["new-a", "new-b"]


# ---------------------------------------------------------------------------
# Auto-save
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_autosave_mints_draft_slugs(db_session: AsyncSession):
    user = await _create_user(db_session)
    first = await article_service.auto_save_draft(db_session, user.id, AutoSaveRequest(content="<p>a</p>"))
    second = await article_service.auto_save_draft(db_session, user.id, AutoSaveRequest(content="<p>b</p>"))

    assert first["slug"] == "draft"
    assert second["slug"] == "draft-1"
    assert first["auto_save_version"] == 1
    assert first["last_auto_save"] is not None


@pytest.mark.asyncio
async def test_autosave_version_counts_saves(db_session: AsyncSession):
    user = await _create_user(db_session)
    draft = await _create(db_session, user)

    for n in range(1, 4):
        saved = await article_service.auto_save_draft(
            db_session, user.id,
            AutoSaveRequest(article_id=draft["id"], title=f"Take {n}", content=f"<p>v{n}</p>", tags=["wip"]),
        )
        assert saved["auto_save_version"] == 1 + n

    article = await article_service.get_article(db_session, draft["id"], user.id)
    assert article["title"] == "Take 3"
    assert article["content"] == "<p>v3</p>"
    assert article["status"] == "draft"
    assert article["tags"] == ["wip"]
    # Omitted fields are left alone.
    assert article["slug"] == "service-article"


@pytest.mark.asyncio
async def test_autosave_rejects_published_foreign_and_missing(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    other = await _create_user(db_session, "other")
    published = await _create(db_session, author, status=ArticleStatus.PUBLISHED)
    draft = await _create(db_session, author, title="Draft")

    with pytest.raises(NotFound):
        await article_service.auto_save_draft(
            db_session, author.id, AutoSaveRequest(article_id=published["id"], content="x")
        )
    with pytest.raises(NotFound):
        await article_service.auto_save_draft(
            db_session, other.id, AutoSaveRequest(article_id=draft["id"], content="x")
        )
    with pytest.raises(NotFound):
        await article_service.auto_save_draft(
            db_session, author.id, AutoSaveRequest(article_id=99999, content="x")
        )


# ---------------------------------------------------------------------------
# Publish / delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_twice_fails_and_keeps_timestamp(db_session: AsyncSession):
    user = await _create_user(db_session)
    draft = await _create(db_session, user)

    published = await article_service.publish_article(db_session, user.id, draft["id"])
    with pytest.raises(NotFound):
        await article_service.publish_article(db_session, user.id, draft["id"])

    again = await article_service.get_article(db_session, draft["id"])
    assert again["published_at"] == published["published_at"]


@pytest.mark.asyncio
async def test_delete_cascades_to_engagement(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    fan = await _create_user(db_session, "fan")
    article = await _create(db_session, author, status=ArticleStatus.PUBLISHED)
    await engagement_service.toggle_clap(db_session, fan.id, article["id"])

    await article_service.delete_article(db_session, author.id, article["id"])

    claps = (await db_session.execute(select(func.count()).select_from(Clap))).scalar_one()
    assert claps == 0
    with pytest.raises(NotFound):
        await article_service.delete_article(db_session, author.id, article["id"])


# ---------------------------------------------------------------------------
# Featuring and statistics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_toggle_featured_by_staff(db_session: AsyncSession):
    author = await _create_user(db_session, "author")
    editor = await _create_user(db_session, "editor", is_staff=True)
    article = await _create(db_session, author, status=ArticleStatus.PUBLISHED)

    with pytest.raises(Unauthorized):
        await article_service.toggle_featured(db_session, author.id, article["id"])

    assert (await article_service.toggle_featured(db_session, editor.id, article["id"]))["is_featured"] is True
    featured = await article_service.get_featured(db_session)
    assert [a["id"] for a in featured.items] == [article["id"]]

    assert (await article_service.toggle_featured(db_session, editor.id, article["id"]))["is_featured"] is False

    with pytest.raises(NotFound):
        await article_service.toggle_featured(db_session, editor.id, 99999)


@pytest.mark.asyncio
async def test_author_stats(db_session: AsyncSession):
    user = await _create_user(db_session)
    popular = await _create(db_session, user, title="Popular", status=ArticleStatus.PUBLISHED)
    await _create(db_session, user, title="Quiet", status=ArticleStatus.PUBLISHED)
    await _create(db_session, user, title="Unfinished")

    for _ in range(4):
        await article_service.record_view(db_session, popular["id"])
    for _ in range(2):
        await article_service.record_read(db_session, popular["id"])

    stats = await article_service.get_author_stats(db_session, user.id)
    assert stats["total_articles"] == 2
    assert stats["total_views"] == 4
    assert stats["total_reads"] == 2
    assert stats["average_engagement_rate"] == pytest.approx(50.0)
    assert stats["average_reading_time"] == pytest.approx(1.0)
    assert [a["title"] for a in stats["top_articles"]] == ["Popular", "Quiet"]
