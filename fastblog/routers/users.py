from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from fastblog.database import get_db
from fastblog.dependencies import PaginationParams
from fastblog.ratelimit import rate_limiter
from fastblog.schemas import AuthorStats, FollowResponse, PaginatedResponse, UserCreate, UserResponse
from fastblog.security import Principal, get_current_principal
from fastblog.services import article_service, engagement_service, user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])
limited = [Depends(rate_limiter)]

@router.get("", response_model=list[UserResponse])
async def list_users(pagination: PaginationParams = Depends(), db: AsyncSession = Depends(get_db)):
    return await user_service.get_users(db, pagination.page, pagination.limit)

@router.post("", status_code=201, response_model=UserResponse, dependencies=limited)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    return await user_service.create_user(db, data)

@router.get("/me/bookmarks", response_model=PaginatedResponse)
async def get_my_bookmarks(
    pagination: PaginationParams = Depends(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await engagement_service.get_user_bookmarks(
        db, principal.user_id, pagination.page, pagination.limit
    )

@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)

@router.get("/{user_id}/stats", response_model=AuthorStats)
async def get_author_stats(user_id: int, db: AsyncSession = Depends(get_db)):
    await user_service.get_user(db, user_id)
    return await article_service.get_author_stats(db, user_id)

@router.post("/{user_id}/follow", response_model=FollowResponse, dependencies=limited)
async def follow_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.follow_user(db, principal.user_id, user_id)

@router.delete("/{user_id}/follow", response_model=FollowResponse, dependencies=limited)
async def unfollow_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.unfollow_user(db, principal.user_id, user_id)
