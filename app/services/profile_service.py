"""
Profile service: public profiles and the follow relation.

Following uses the same idempotent pattern as favorites: a conflict-safe
insert on the ``follows`` primary key and an unconditional DELETE.
"""
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import insert_ignoring_conflicts, supports_conflict_safe_insert, transaction
from app.errors import NotFoundError, ValidationError
from app.models import Profile, follows
from app.repositories.article_repository import ArticleRepository

logger = logging.getLogger(__name__)

_repository = ArticleRepository()


def _profile_to_dict(profile: Profile, following: bool) -> dict:
    return {
        "username": profile.username,
        "bio": profile.bio,
        "image": profile.image,
        "following": following,
    }


async def _get_profile(db: AsyncSession, username: str) -> Profile:
    q = select(Profile).where(Profile.username == username)
    profile = (await db.execute(q)).scalar_one_or_none()
    if profile is None:
        raise NotFoundError("Profile", username)
    return profile


async def get_profile(db: AsyncSession, username: str, viewer_id: int | None = None) -> dict:
    async with transaction(db):
        profile = await _get_profile(db, username)
        following = False
        if viewer_id is not None:
            following = await _repository.is_following(db, viewer_id, profile.user_id)
        return _profile_to_dict(profile, following)


async def follow(db: AsyncSession, follower_id: int, username: str) -> dict:
    """Make *follower_id* follow *username*; repeating it is a no-op."""
    if follower_id is None:
        raise ValidationError("user_id")
    async with transaction(db):
        await _repository.get_user(db, follower_id)
        profile = await _get_profile(db, username)
        if profile.user_id == follower_id:
            raise ValidationError("username", "cannot be followed by its own user")

        row = {"follower_id": follower_id, "followee_id": profile.user_id}
        if supports_conflict_safe_insert(db):
            await insert_ignoring_conflicts(db, follows, [row], ["follower_id", "followee_id"])
        else:
            try:
                async with db.begin_nested():
                    await insert_ignoring_conflicts(
                        db, follows, [row], ["follower_id", "followee_id"]
                    )
            except IntegrityError:
                logger.debug("User %s already follows %r", follower_id, username)
        return _profile_to_dict(profile, True)


async def unfollow(db: AsyncSession, follower_id: int, username: str) -> dict:
    """Remove the follow edge if present; never fails when it is missing."""
    if follower_id is None:
        raise ValidationError("user_id")
    async with transaction(db):
        await _repository.get_user(db, follower_id)
        profile = await _get_profile(db, username)
        await db.execute(
            delete(follows).where(
                follows.c.follower_id == follower_id,
                follows.c.followee_id == profile.user_id,
            )
        )
        return _profile_to_dict(profile, False)
