"""
Favorite toggle: idempotent membership changes on the ``favorites`` join.

Both directions are written so that repeating them changes nothing:
favoriting inserts with ``ON CONFLICT DO NOTHING`` against the composite
primary key, unfavoriting is a plain DELETE.  The returned record always
carries a favorites count read back from the relation after the write.
"""
import logging

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import insert_ignoring_conflicts, supports_conflict_safe_insert
from app.models import favorites
from app.repositories.article_repository import ArticleRecord, ArticleRepository

logger = logging.getLogger(__name__)


class FavoriteToggle:
    def __init__(self, repository: ArticleRepository):
        self._repository = repository

    async def favorite(self, db: AsyncSession, user_id: int, slug: str) -> ArticleRecord:
        await self._repository.get_user(db, user_id)
        record = await self._repository.find_by_slug(db, slug)
        row = {"user_id": user_id, "article_id": record.article.id}

        if supports_conflict_safe_insert(db):
            inserted = await insert_ignoring_conflicts(
                db, favorites, [row], ["user_id", "article_id"]
            )
        else:
            # No ON CONFLICT: let the primary key reject the duplicate inside
            # a savepoint so the outer transaction survives.
            try:
                async with db.begin_nested():
                    inserted = await insert_ignoring_conflicts(
                        db, favorites, [row], ["user_id", "article_id"]
                    )
            except IntegrityError:
                inserted = 0

        if inserted:
            logger.info("User %s favorited article %r", user_id, slug)
        return await self._refresh(db, record, user_id)

    async def unfavorite(self, db: AsyncSession, user_id: int, slug: str) -> ArticleRecord:
        await self._repository.get_user(db, user_id)
        record = await self._repository.find_by_slug(db, slug)

        result = await db.execute(
            delete(favorites).where(
                favorites.c.user_id == user_id,
                favorites.c.article_id == record.article.id,
            )
        )
        if result.rowcount:
            logger.info("User %s unfavorited article %r", user_id, slug)
        return await self._refresh(db, record, user_id)

    async def _refresh(self, db: AsyncSession, record: ArticleRecord, user_id: int) -> ArticleRecord:
        article_id = record.article.id
        record.favorites_count = await self._repository.count_favorites(db, article_id)
        record.favorited = await self._repository.is_favorited(db, user_id, article_id)
        record.following_author = await self._repository.is_following(
            db, user_id, record.article.author_id
        )
        return record
