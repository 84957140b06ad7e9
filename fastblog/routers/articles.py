from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from fastblog.database import get_db
from fastblog.dependencies import PaginationParams
from fastblog.ratelimit import rate_limiter
from fastblog.schemas import (
    ArticleCreate, ArticleStats, ArticleUpdate, ArticleView, AutoSaveRequest, AutoSaveResponse,
    BookmarkResponse, ClapRequest, ClapResponse, CommentCreate, CommentResponse, PaginatedResponse,
)
from fastblog.security import Principal, get_current_principal, get_optional_principal
from fastblog.services import article_service, engagement_service, ranking_service

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])
limited = [Depends(rate_limiter)]


def _viewer_id(principal: Principal | None) -> int | None:
    return principal.user_id if principal else None


# Static paths are declared before "/{article_id}" so they are not shadowed.

@router.get("", response_model=PaginatedResponse)
async def list_articles(
    pagination: PaginationParams = Depends(),
    sort: str = "recent",
    author_id: int | None = None,
    tag: str | None = None,
    category: str | None = None,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_articles(
        db, pagination.page, pagination.limit, sort, author_id, tag, category, _viewer_id(principal)
    )

@router.post("", status_code=201, response_model=ArticleView, dependencies=limited)
async def create_article(
    data: ArticleCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_article(db, principal.user_id, data)

@router.get("/feed", response_model=PaginatedResponse)
async def get_feed(
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await ranking_service.get_feed(db, principal.user_id, pagination.page, pagination.limit)

@router.get("/trending", response_model=PaginatedResponse)
async def get_trending(
    pagination: PaginationParams = Depends(),
    window_hours: int | None = Query(
        None, ge=1, le=ranking_service.MAX_TRENDING_WINDOW_HOURS, description="Trailing window in hours."
    ),
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await ranking_service.get_trending(
        db, pagination.page, pagination.limit, window_hours, _viewer_id(principal)
    )

@router.get("/featured", response_model=PaginatedResponse)
async def get_featured(
    pagination: PaginationParams = Depends(),
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_featured(db, pagination.page, pagination.limit, _viewer_id(principal))

@router.get("/drafts", response_model=PaginatedResponse)
async def get_drafts(
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_drafts(db, principal.user_id, pagination.page, pagination.limit)

@router.post("/drafts/autosave", response_model=AutoSaveResponse, dependencies=limited)
async def auto_save_draft(
    data: AutoSaveRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.auto_save_draft(db, principal.user_id, data)

@router.get("/slug/{slug}", response_model=ArticleView)
async def get_article_by_slug(
    slug: str,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_article_by_slug(db, slug, _viewer_id(principal))

@router.get("/{article_id}", response_model=ArticleView)
async def get_article(
    article_id: int,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_article(db, article_id, _viewer_id(principal))

@router.put("/{article_id}", response_model=ArticleView, dependencies=limited)
async def update_article(
    article_id: int,
    data: ArticleUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.update_article(db, principal.user_id, article_id, data)

@router.delete("/{article_id}", status_code=204, dependencies=limited)
async def delete_article(
    article_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    await article_service.delete_article(db, principal.user_id, article_id)

@router.post("/{article_id}/publish", response_model=ArticleView, dependencies=limited)
async def publish_article(
    article_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.publish_article(db, principal.user_id, article_id)

@router.post("/{article_id}/view", dependencies=limited)
async def record_view(article_id: int, db: AsyncSession = Depends(get_db)):
    return await article_service.record_view(db, article_id)

@router.post("/{article_id}/read", dependencies=limited)
async def record_read(article_id: int, db: AsyncSession = Depends(get_db)):
    return await article_service.record_read(db, article_id)

@router.post("/{article_id}/feature", dependencies=limited)
async def toggle_featured(
    article_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.toggle_featured(db, principal.user_id, article_id)

@router.get("/{article_id}/stats", response_model=ArticleStats)
async def get_article_stats(
    article_id: int,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_article_stats(db, article_id, _viewer_id(principal))

@router.post("/{article_id}/clap", response_model=ClapResponse, dependencies=limited)
async def toggle_clap(
    article_id: int,
    data: ClapRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    clap_count = data.clap_count if data else 1
    return await engagement_service.toggle_clap(db, principal.user_id, article_id, clap_count)

@router.post("/{article_id}/bookmark", response_model=BookmarkResponse, dependencies=limited)
async def bookmark_article(
    article_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await engagement_service.bookmark_article(db, principal.user_id, article_id)

@router.delete("/{article_id}/bookmark", response_model=BookmarkResponse, dependencies=limited)
async def unbookmark_article(
    article_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await engagement_service.unbookmark_article(db, principal.user_id, article_id)

@router.get("/{article_id}/comments", response_model=list[CommentResponse])
async def get_comments(
    article_id: int,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
):
    return await engagement_service.get_comments(db, article_id, _viewer_id(principal))

@router.post("/{article_id}/comments", status_code=201, response_model=CommentResponse, dependencies=limited)
async def add_comment(
    article_id: int,
    data: CommentCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await engagement_service.add_comment(db, principal.user_id, article_id, data)
