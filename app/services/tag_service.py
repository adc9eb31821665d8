"""
Tag service: resolves tag names to Tag rows and lists known tags.

Reconciliation never does check-then-insert: missing names are written
with ``INSERT ... ON CONFLICT (name) DO NOTHING`` and then read back, so
two requests introducing the same new tag at the same time both end up
with the single row the unique constraint allows.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import TAG_LIST_KEY, cache
from app.config import settings
from app.database import insert_ignoring_conflicts, transaction
from app.errors import TagConflictError
from app.models import Tag

logger = logging.getLogger(__name__)


def unique_names(names) -> list[str]:
    """Drop duplicates and blank entries, keeping first-occurrence order."""
    seen: dict[str, None] = {}
    for name in names or ():
        if name is None:
            continue
        name = name.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen)


class TagReconciler:
    async def reconcile(self, db: AsyncSession, names) -> list[Tag]:
        """
        Return one Tag per distinct name in *names*, creating missing ones.

        The result follows the first-occurrence order of *names*.  Raises
        ``TagConflictError`` when the database cannot do a conflict-safe
        insert and another transaction created one of the names first.
        """
        ordered = unique_names(names)
        if not ordered:
            return []

        existing = await self._load(db, ordered)
        missing = [name for name in ordered if name not in existing]
        if missing:
            try:
                inserted = await insert_ignoring_conflicts(
                    db, Tag.__table__, [{"name": name} for name in missing], ["name"]
                )
            except IntegrityError as exc:
                raise TagConflictError(missing) from exc
            logger.debug("Inserted %s new tag(s) of %d requested", inserted, len(missing))
            existing.update(await self._load(db, missing))

        return [existing[name] for name in ordered]

    async def _load(self, db: AsyncSession, names: list[str]) -> dict[str, Tag]:
        result = await db.execute(select(Tag).where(Tag.name.in_(names)))
        return {tag.name: tag for tag in result.scalars().all()}


async def list_tags(db: AsyncSession) -> list[str]:
    """Return every tag name in alphabetical order (cache-aside)."""
    cached = await cache.get(TAG_LIST_KEY)
    if cached is not None:
        return cached

    async with transaction(db):
        result = await db.execute(select(Tag.name).order_by(Tag.name))
        names = list(result.scalars().all())
    await cache.set(TAG_LIST_KEY, names, ttl=settings.CACHE_TTL_TAGS)
    return names
