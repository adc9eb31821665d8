"""
Article workflow service: orchestrates article creation, lookup,
favoriting and deletion.

Design notes
------------
- Collaborators are passed in explicitly (tag reconciler, slug generator,
  repository, favorite toggle); ``article_workflow`` at the bottom of the
  module is the instance the routers use.
- Every public write runs inside ``transaction(db)``.  Tag inserts, the
  article row and its join rows commit or roll back together, so a slug
  collision never leaves freshly created tags behind.
- A slug collision is reported as ``ConflictError``; no suffix is appended.
- ``favoritesCount`` is read from the ``favorites`` relation on every call
  and never stored on the article.
- Views use the RealWorld wire format (camelCase keys, nested author
  profile).
"""
import logging
import math

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import cache
from app.database import after_commit, transaction
from app.errors import ConflictError, ForbiddenError, TagConflictError, ValidationError
from app.models import Article, User
from app.repositories.article_repository import ArticleRecord, ArticleRepository
from app.schemas import ArticleCreate
from app.services.favorite_service import FavoriteToggle
from app.services.slug import SlugGenerator
from app.services.tag_service import TagReconciler

logger = logging.getLogger(__name__)

# A tag-name race on a store without ON CONFLICT support is retried once.
_CREATE_ATTEMPTS = 2


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _profile_to_dict(user: User, following: bool = False) -> dict:
    profile = user.profile
    return {
        "username": profile.username if profile else None,
        "bio": profile.bio if profile else None,
        "image": profile.image if profile else None,
        "following": following,
    }


def _article_to_dict(record: ArticleRecord) -> dict:
    """Serialise a hydrated ArticleRecord to the ArticleView dict."""
    article = record.article
    return {
        "slug": article.slug,
        "title": article.title,
        "description": article.description,
        "body": article.body,
        "tagList": list(record.tag_names),
        "createdAt": article.created_at.isoformat() if article.created_at else None,
        "updatedAt": article.updated_at.isoformat() if article.updated_at else None,
        "favorited": record.favorited,
        "favoritesCount": record.favorites_count,
        "author": _profile_to_dict(record.author, record.following_author),
    }


def _require(value, field: str):
    if value is None:
        raise ValidationError(field)
    return value


# ---------------------------------------------------------------------------
# Workflow service
# ---------------------------------------------------------------------------

class ArticleWorkflowService:
    def __init__(
        self,
        reconciler: TagReconciler,
        slugs: SlugGenerator,
        repository: ArticleRepository,
        favorites: FavoriteToggle | None = None,
    ):
        self._reconciler = reconciler
        self._slugs = slugs
        self._repository = repository
        self._favorites = favorites or FavoriteToggle(repository)

    async def create_article(self, db: AsyncSession, data: ArticleCreate, author_id: int) -> dict:
        """
        Create an article for *author_id* and return its view.

        ``tagList`` in the result holds the reconciled tag names in the
        order they were first given.  Raises ``NotFoundError`` for an
        unknown author, ``ValidationError`` for a missing author id or
        title, ``ConflictError`` when the slug is already taken.
        """
        _require(author_id, "author_id")
        if not data.title or not data.title.strip():
            raise ValidationError("title")

        for attempt in range(1, _CREATE_ATTEMPTS + 1):
            try:
                async with transaction(db):
                    record = await self._create(db, data, author_id)
                    view = _article_to_dict(record)
                break
            except TagConflictError as exc:
                if attempt == _CREATE_ATTEMPTS:
                    raise
                logger.warning("Retrying article creation after tag race on %s", exc.names)

        if view["tagList"]:
            await after_commit(db, cache.invalidate_tags)
        logger.info("Article %r created by user %s", view["slug"], author_id)
        return view

    async def _create(self, db: AsyncSession, data: ArticleCreate, author_id: int) -> ArticleRecord:
        author = await self._repository.get_user(db, author_id)
        slug = self._slugs.generate(data.title)
        tags = await self._reconciler.reconcile(db, data.tag_list)

        article = Article(
            slug=slug,
            title=data.title,
            description=data.description,
            body=data.body,
            author_id=author.id,
        )
        try:
            await self._repository.save(db, article, tags)
        except IntegrityError as exc:
            raise ConflictError(f"Article with slug '{slug}' already exists") from exc
        return await self._repository.find_by_slug(db, slug, viewer_id=author_id)

    async def find_by_slug(self, db: AsyncSession, slug: str, viewer_id: int | None = None) -> dict:
        """Return the view for *slug*; raises ``NotFoundError`` when absent."""
        async with transaction(db):
            record = await self._repository.find_by_slug(db, slug, viewer_id)
            return _article_to_dict(record)

    async def favorite_article(self, db: AsyncSession, user_id: int, slug: str) -> dict:
        _require(user_id, "user_id")
        async with transaction(db):
            record = await self._favorites.favorite(db, user_id, slug)
            return _article_to_dict(record)

    async def unfavorite_article(self, db: AsyncSession, user_id: int, slug: str) -> dict:
        _require(user_id, "user_id")
        async with transaction(db):
            record = await self._favorites.unfavorite(db, user_id, slug)
            return _article_to_dict(record)

    async def delete_article(self, db: AsyncSession, slug: str, user_id: int) -> None:
        """
        Delete the article behind *slug*.  Only its author may do so.

        Tag associations and favorites go with it; Tag rows stay.
        """
        _require(user_id, "user_id")
        async with transaction(db):
            record = await self._repository.find_by_slug(db, slug)
            if record.article.author_id != user_id:
                raise ForbiddenError(f"Only the author can delete article '{slug}'")
            await self._repository.delete(db, slug=slug)
        logger.info("Article %r deleted by user %s", slug, user_id)

    async def list_articles(
        self,
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
        tag: str | None = None,
        author: str | None = None,
        favorited: str | None = None,
        viewer_id: int | None = None,
    ) -> dict:
        """Return one page of article views, newest first."""
        async with transaction(db):
            total, articles = await self._repository.list_articles(
                db,
                offset=(page - 1) * page_size,
                limit=page_size,
                tag=tag,
                author=author,
                favorited_by=favorited,
            )
            records = await self._repository.hydrate_many(db, articles, viewer_id)
            return {
                "articles": [_article_to_dict(r) for r in records],
                "articlesCount": total,
                "page": page,
                "page_size": page_size,
                "pages": math.ceil(total / page_size) if total > 0 else 0,
            }


_repository = ArticleRepository()

article_workflow = ArticleWorkflowService(
    reconciler=TagReconciler(),
    slugs=SlugGenerator(),
    repository=_repository,
    favorites=FavoriteToggle(_repository),
)
