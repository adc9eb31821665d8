"""
Article repository: persistence for the Article aggregate.

No business rules live here.  Reads return ``ArticleRecord`` value objects
that are fully populated by explicit queries (author + profile joined,
tags ordered by their stored position, live favorites count), so nothing
downstream can trigger a lazy load.
"""
from dataclasses import dataclass, field

from sqlalchemy import delete, exists, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.errors import NotFoundError
from app.models import Article, Profile, Tag, User, article_tags, favorites, follows


@dataclass
class ArticleRecord:
    article: Article
    author: User
    tag_names: list[str] = field(default_factory=list)
    favorites_count: int = 0
    favorited: bool = False
    following_author: bool = False


class ArticleRepository:
    async def find_by_slug(
        self, db: AsyncSession, slug: str, viewer_id: int | None = None
    ) -> ArticleRecord:
        q = (
            select(Article)
            .where(Article.slug == slug)
            .options(joinedload(Article.author).joinedload(User.profile))
            .execution_options(populate_existing=True)
        )
        article = (await db.execute(q)).unique().scalar_one_or_none()
        if article is None:
            raise NotFoundError("Article", slug)
        return await self.hydrate(db, article, viewer_id)

    async def hydrate(
        self, db: AsyncSession, article: Article, viewer_id: int | None = None
    ) -> ArticleRecord:
        """Build the ArticleRecord for an article whose author is loaded."""
        record = ArticleRecord(
            article=article,
            author=article.author,
            tag_names=await self.tag_names(db, article.id),
            favorites_count=await self.count_favorites(db, article.id),
        )
        if viewer_id is not None:
            record.favorited = await self.is_favorited(db, viewer_id, article.id)
            record.following_author = await self.is_following(db, viewer_id, article.author_id)
        return record

    async def hydrate_many(
        self, db: AsyncSession, articles: list[Article], viewer_id: int | None = None
    ) -> list[ArticleRecord]:
        """
        Batch version of ``hydrate`` for list pages: one grouped query per
        relation instead of one per article.
        """
        if not articles:
            return []
        ids = [a.id for a in articles]

        tag_rows = await db.execute(
            select(article_tags.c.article_id, Tag.name)
            .join(Tag, Tag.id == article_tags.c.tag_id)
            .where(article_tags.c.article_id.in_(ids))
            .order_by(article_tags.c.article_id, article_tags.c.position)
        )
        names: dict[int, list[str]] = {}
        for article_id, name in tag_rows:
            names.setdefault(article_id, []).append(name)

        count_rows = await db.execute(
            select(favorites.c.article_id, func.count())
            .where(favorites.c.article_id.in_(ids))
            .group_by(favorites.c.article_id)
        )
        counts = dict(count_rows.all())

        favorited: set[int] = set()
        followed: set[int] = set()
        if viewer_id is not None:
            favorited = set(
                (
                    await db.execute(
                        select(favorites.c.article_id).where(
                            favorites.c.user_id == viewer_id, favorites.c.article_id.in_(ids)
                        )
                    )
                ).scalars()
            )
            followed = set(
                (
                    await db.execute(
                        select(follows.c.followee_id).where(
                            follows.c.follower_id == viewer_id,
                            follows.c.followee_id.in_([a.author_id for a in articles]),
                        )
                    )
                ).scalars()
            )

        return [
            ArticleRecord(
                article=a,
                author=a.author,
                tag_names=names.get(a.id, []),
                favorites_count=counts.get(a.id, 0),
                favorited=a.id in favorited,
                following_author=a.author_id in followed,
            )
            for a in articles
        ]

    async def save(self, db: AsyncSession, article: Article, tags: list[Tag]) -> Article:
        """
        Insert *article* and its tag associations, in the order given.

        The article row is flushed first so a slug collision is raised
        here, inside the caller's transaction.
        """
        db.add(article)
        await db.flush()
        if tags:
            await db.execute(
                insert(article_tags),
                [
                    {"article_id": article.id, "tag_id": tag.id, "position": position}
                    for position, tag in enumerate(tags)
                ],
            )
        return article

    async def delete(self, db: AsyncSession, **filters) -> int:
        """Delete every article matching *filters*; returns the row count."""
        ids = select(Article.id).filter_by(**filters)
        # Join rows are removed explicitly so stores without ON DELETE
        # CASCADE enforcement behave the same.
        await db.execute(delete(article_tags).where(article_tags.c.article_id.in_(ids)))
        await db.execute(delete(favorites).where(favorites.c.article_id.in_(ids)))
        result = await db.execute(delete(Article).filter_by(**filters))
        return result.rowcount

    async def list_articles(
        self,
        db: AsyncSession,
        *,
        offset: int,
        limit: int,
        tag: str | None = None,
        author: str | None = None,
        favorited_by: str | None = None,
    ) -> tuple[int, list[Article]]:
        """Return (total, page) for articles newest first, optionally filtered."""
        conditions = []
        if tag:
            conditions.append(
                Article.id.in_(
                    select(article_tags.c.article_id)
                    .join(Tag, Tag.id == article_tags.c.tag_id)
                    .where(Tag.name == tag)
                )
            )
        if author:
            conditions.append(
                Article.author_id.in_(select(Profile.user_id).where(Profile.username == author))
            )
        if favorited_by:
            conditions.append(
                Article.id.in_(
                    select(favorites.c.article_id)
                    .join(Profile, Profile.user_id == favorites.c.user_id)
                    .where(Profile.username == favorited_by)
                )
            )

        total = (
            await db.execute(select(func.count()).select_from(Article).where(*conditions))
        ).scalar_one()
        q = (
            select(Article)
            .where(*conditions)
            .options(joinedload(Article.author).joinedload(User.profile))
            .execution_options(populate_existing=True)
            .order_by(Article.created_at.desc(), Article.id.desc())
            .offset(offset)
            .limit(limit)
        )
        articles = (await db.execute(q)).unique().scalars().all()
        return total, list(articles)

    # ------------------------------------------------------------------
    # Relation queries
    # ------------------------------------------------------------------

    async def tag_names(self, db: AsyncSession, article_id: int) -> list[str]:
        q = (
            select(Tag.name)
            .join(article_tags, article_tags.c.tag_id == Tag.id)
            .where(article_tags.c.article_id == article_id)
            .order_by(article_tags.c.position)
        )
        return list((await db.execute(q)).scalars().all())

    async def count_favorites(self, db: AsyncSession, article_id: int) -> int:
        q = select(func.count()).select_from(favorites).where(favorites.c.article_id == article_id)
        return (await db.execute(q)).scalar_one()

    async def is_favorited(self, db: AsyncSession, user_id: int, article_id: int) -> bool:
        q = select(
            exists().where(favorites.c.user_id == user_id, favorites.c.article_id == article_id)
        )
        return bool((await db.execute(q)).scalar())

    async def is_following(self, db: AsyncSession, follower_id: int, followee_id: int) -> bool:
        q = select(
            exists().where(follows.c.follower_id == follower_id, follows.c.followee_id == followee_id)
        )
        return bool((await db.execute(q)).scalar())

    async def get_user(self, db: AsyncSession, user_id: int) -> User:
        """Return the User with its profile loaded, or raise NotFoundError."""
        q = (
            select(User)
            .where(User.id == user_id)
            .options(joinedload(User.profile))
            .execution_options(populate_existing=True)
        )
        user = (await db.execute(q)).unique().scalar_one_or_none()
        if user is None:
            raise NotFoundError("User", user_id)
        return user
