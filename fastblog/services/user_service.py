"""
User service — accounts and the follow graph.

Accounts are created by the external identity flow; this module only keeps
the rows the publishing core needs (author profiles, follow edges and the
denormalised follower/following counters).  Counters move only when a
follow edge was actually inserted or deleted, and never drop below zero.
"""
import logging

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fastblog.dependencies import clamp_pagination
from fastblog.errors import Conflict, NotFound, ValidationFailed
from fastblog.models import Follow, User, utcnow
from fastblog.schemas import UserCreate

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _user_to_dict(user: User) -> dict:
    """Serialise a User ORM instance to a plain dict."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "bio": user.bio,
        "avatar_url": user.avatar_url,
        "is_verified": user.is_verified,
        "followers_count": user.followers_count,
        "following_count": user.following_count,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

async def get_users(db: AsyncSession, page: int = 1, limit: int = 20) -> list[dict]:
    """Return users ordered by creation date (newest first)."""
    page, limit = clamp_pagination(page, limit)
    q = (
        select(User)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(q)
    return [_user_to_dict(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict:
    q = select(User).where(User.id == user_id).execution_options(populate_existing=True)
    user = (await db.execute(q)).scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return _user_to_dict(user)


async def create_user(db: AsyncSession, data: UserCreate, is_staff: bool = False) -> dict:
    """
    Create a new user and return its serialised dict.

    Username and email uniqueness is enforced by the schema's unique
    constraints; a violation surfaces as ``Conflict``.
    """
    user = User(
        username=data.username,
        email=data.email,
        display_name=data.display_name,
        bio=data.bio,
        avatar_url=data.avatar_url,
        is_staff=is_staff,
        created_at=utcnow(),
    )
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError as exc:
        logger.info("Rejected duplicate user %r: %s", data.username, exc.orig)
        raise Conflict("Username or email already registered") from exc
    return _user_to_dict(user)


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------

async def is_following(db: AsyncSession, follower_id: int, following_id: int) -> bool:
    q = select(Follow.follower_id).where(
        Follow.follower_id == follower_id, Follow.following_id == following_id
    )
    return (await db.execute(q)).scalar_one_or_none() is not None


async def _followers_count(db: AsyncSession, user_id: int) -> int:
    q = select(User.followers_count).where(User.id == user_id)
    return (await db.execute(q)).scalar_one()


async def _require_user(db: AsyncSession, user_id: int) -> None:
    if (await db.execute(select(User.id).where(User.id == user_id))).scalar_one_or_none() is None:
        raise NotFound("User not found")


def _floored_decrement(column):
    return case((column > 0, column - 1), else_=0)


async def follow_user(db: AsyncSession, follower_id: int, following_id: int) -> dict:
    """Idempotent: following someone already followed changes nothing."""
    if follower_id == following_id:
        raise ValidationFailed({"user_id": "Users cannot follow themselves"})
    await _require_user(db, following_id)

    changed = False
    if not await is_following(db, follower_id, following_id):
        try:
            async with db.begin_nested():
                db.add(Follow(follower_id=follower_id, following_id=following_id, created_at=utcnow()))
                await db.flush()
            changed = True
        except IntegrityError:
            if not await is_following(db, follower_id, following_id):
                raise
            logger.info("Concurrent follow %d -> %d absorbed", follower_id, following_id)

    if changed:
        await db.execute(
            update(User)
            .where(User.id == following_id)
            .values(followers_count=User.followers_count + 1)
            .execution_options(**_NO_SYNC)
        )
        await db.execute(
            update(User)
            .where(User.id == follower_id)
            .values(following_count=User.following_count + 1)
            .execution_options(**_NO_SYNC)
        )

    return {
        "following": True,
        "changed": changed,
        "followers_count": await _followers_count(db, following_id),
    }


async def unfollow_user(db: AsyncSession, follower_id: int, following_id: int) -> dict:
    await _require_user(db, following_id)
    result = await db.execute(
        delete(Follow)
        .where(Follow.follower_id == follower_id, Follow.following_id == following_id)
        .execution_options(**_NO_SYNC)
    )
    changed = result.rowcount > 0
    if changed:
        await db.execute(
            update(User)
            .where(User.id == following_id)
            .values(followers_count=_floored_decrement(User.followers_count))
            .execution_options(**_NO_SYNC)
        )
        await db.execute(
            update(User)
            .where(User.id == follower_id)
            .values(following_count=_floored_decrement(User.following_count))
            .execution_options(**_NO_SYNC)
        )

    return {
        "following": False,
        "changed": changed,
        "followers_count": await _followers_count(db, following_id),
    }
