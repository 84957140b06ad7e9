from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from fastblog.database import get_db
from fastblog.dependencies import PaginationParams
from fastblog.schemas import SearchArticleResult, SearchResponse, SearchSort, SearchUserResult
from fastblog.services import search_service

router = APIRouter(prefix="/api/v1/search", tags=["search"])

@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    sort: SearchSort = SearchSort.RELEVANCE,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await search_service.global_search(db, q, pagination.page, pagination.limit, sort)

@router.get("/articles", response_model=list[SearchArticleResult])
async def search_articles(
    q: str = Query(..., min_length=1, max_length=200),
    sort: SearchSort = SearchSort.RELEVANCE,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await search_service.search_articles(db, q, pagination.page, pagination.limit, sort)

@router.get("/users", response_model=list[SearchUserResult])
async def search_users(
    q: str = Query(..., min_length=1, max_length=200),
    sort: SearchSort = SearchSort.RELEVANCE,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await search_service.search_users(db, q, pagination.page, pagination.limit, sort)

@router.get("/suggestions", response_model=list[str])
async def get_suggestions(
    q: str = Query(..., min_length=1, max_length=200),
    db: AsyncSession = Depends(get_db),
):
    return await search_service.get_suggestions(db, q)
