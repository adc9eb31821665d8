"""
Direct service-layer tests for the article workflow: creation with tag
reconciliation, lookup by slug, idempotent favorite / unfavorite and
deletion.  Services are called with a plain AsyncSession; committed state
is inspected through an independent session.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

import app.database as database
from app.database import transaction
from app.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
    translate_db_error,
)
from app.models import Article, Profile, Tag, User, article_tags, favorites
from app.schemas import ArticleCreate
from app.services.article_service import article_workflow
from app.services.slug import slugify


def _article(title: str = "New Article", tags: list[str] | None = None) -> ArticleCreate:
    return ArticleCreate(
        title=title,
        description="New Description",
        body="New Body",
        tagList=tags or [],
    )


async def _count(session_factory, q) -> int:
    async with session_factory() as s:
        return (await s.execute(q)).scalar_one()


# ---------------------------------------------------------------------------
# create_article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_article_keeps_tag_order(db_session: AsyncSession, make_user):
    user = await make_user()
    result = await article_workflow.create_article(
        db_session, _article(tags=["testTag1", "testTag2"]), user["id"]
    )
    assert result["title"] == "New Article"
    assert result["description"] == "New Description"
    assert result["tagList"] == ["testTag1", "testTag2"]
    assert result["slug"] == "new-article"
    assert result["favoritesCount"] == 0
    assert result["favorited"] is False
    assert result["author"]["username"] == "articleTestUser"


@pytest.mark.asyncio
async def test_create_article_tag_order_is_not_alphabetical(db_session: AsyncSession, make_user):
    user = await make_user()
    result = await article_workflow.create_article(
        db_session, _article("Zebra", ["zeta", "alpha", "mid"]), user["id"]
    )
    assert result["tagList"] == ["zeta", "alpha", "mid"]
    found = await article_workflow.find_by_slug(db_session, "zebra")
    assert found["tagList"] == ["zeta", "alpha", "mid"]


@pytest.mark.asyncio
async def test_create_article_collapses_duplicate_tags(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    result = await article_workflow.create_article(
        db_session, _article(tags=["nestjs", "typescript", "nestjs"]), user["id"]
    )
    assert result["tagList"] == ["nestjs", "typescript"]
    assert await _count(session_factory, select(func.count()).select_from(Tag)) == 2


@pytest.mark.asyncio
async def test_overlapping_tag_lists_share_one_tag_row(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("First", ["nestjs"]), user["id"])
    await article_workflow.create_article(
        db_session, _article("Second", ["nestjs", "typescript"]), user["id"]
    )
    nestjs_rows = await _count(
        session_factory, select(func.count()).select_from(Tag).where(Tag.name == "nestjs")
    )
    assert nestjs_rows == 1
    assert await _count(session_factory, select(func.count()).select_from(Tag)) == 2


@pytest.mark.asyncio
async def test_tag_names_are_case_sensitive(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    result = await article_workflow.create_article(
        db_session, _article(tags=["Python", "python"]), user["id"]
    )
    assert result["tagList"] == ["Python", "python"]
    assert await _count(session_factory, select(func.count()).select_from(Tag)) == 2


@pytest.mark.asyncio
async def test_create_article_without_tags(db_session: AsyncSession, make_user):
    user = await make_user()
    result = await article_workflow.create_article(db_session, _article("No Tags"), user["id"])
    assert result["tagList"] == []


@pytest.mark.asyncio
async def test_create_article_unknown_author(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await article_workflow.create_article(db_session, _article(), 99999)


@pytest.mark.asyncio
async def test_create_article_requires_author_id(db_session: AsyncSession):
    with pytest.raises(ValidationError) as exc_info:
        await article_workflow.create_article(db_session, _article(), None)
    assert exc_info.value.field == "author_id"


@pytest.mark.asyncio
async def test_create_article_requires_title(db_session: AsyncSession, make_user):
    user = await make_user()
    with pytest.raises(ValidationError) as exc_info:
        await article_workflow.create_article(db_session, _article("   "), user["id"])
    assert exc_info.value.field == "title"


@pytest.mark.asyncio
async def test_create_article_title_without_slug_characters(db_session: AsyncSession, make_user):
    user = await make_user()
    with pytest.raises(ValidationError):
        await article_workflow.create_article(db_session, _article("!!!"), user["id"])


@pytest.mark.asyncio
async def test_create_article_with_non_ascii_title(db_session: AsyncSession, make_user):
    user = await make_user()
    result = await article_workflow.create_article(db_session, _article("새로운 기사"), user["id"])
    assert result["slug"] == "새로운-기사"
    assert (await article_workflow.find_by_slug(db_session, "새로운-기사"))["title"] == "새로운 기사"


@pytest.mark.asyncio
async def test_accented_and_plain_titles_do_not_collide(db_session: AsyncSession, make_user):
    user = await make_user()
    first = await article_workflow.create_article(db_session, _article("Café"), user["id"])
    second = await article_workflow.create_article(db_session, _article("Caf"), user["id"])
    assert first["slug"] == "café"
    assert second["slug"] == "caf"


@pytest.mark.asyncio
async def test_duplicate_slug_is_a_conflict(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Same Title"), user["id"])
    with pytest.raises(ConflictError):
        await article_workflow.create_article(db_session, _article("Same  title!"), user["id"])


@pytest.mark.asyncio
async def test_failed_create_leaves_no_orphan_tags(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Taken"), user["id"])

    with pytest.raises(ConflictError):
        await article_workflow.create_article(db_session, _article("Taken", ["orphan"]), user["id"])

    orphans = await _count(
        session_factory, select(func.count()).select_from(Tag).where(Tag.name == "orphan")
    )
    assert orphans == 0
    assert await _count(session_factory, select(func.count()).select_from(Article)) == 1


@pytest.mark.asyncio
async def test_session_is_usable_after_conflict(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Taken"), user["id"])
    with pytest.raises(ConflictError):
        await article_workflow.create_article(db_session, _article("Taken"), user["id"])

    result = await article_workflow.create_article(db_session, _article("Free"), user["id"])
    assert result["slug"] == "free"


# ---------------------------------------------------------------------------
# find_by_slug
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_find_by_slug_round_trip(db_session: AsyncSession, make_user):
    user = await make_user()
    title = "Test Article"
    await article_workflow.create_article(db_session, _article(title, ["nestjs"]), user["id"])

    result = await article_workflow.find_by_slug(db_session, slugify(title))
    assert result["title"] == title
    assert result["tagList"] == ["nestjs"]
    assert result["favoritesCount"] == 0
    assert result["createdAt"] is not None


@pytest.mark.asyncio
async def test_find_by_slug_not_found(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await article_workflow.find_by_slug(db_session, "non-existent-slug")


@pytest.mark.asyncio
async def test_find_by_slug_reports_viewer_state(db_session: AsyncSession, make_user):
    author = await make_user("author")
    reader = await make_user("reader")
    await article_workflow.create_article(db_session, _article("Viewed"), author["id"])
    await article_workflow.favorite_article(db_session, reader["id"], "viewed")

    as_reader = await article_workflow.find_by_slug(db_session, "viewed", viewer_id=reader["id"])
    anonymous = await article_workflow.find_by_slug(db_session, "viewed")
    assert as_reader["favorited"] is True
    assert anonymous["favorited"] is False
    assert anonymous["favoritesCount"] == 1


# ---------------------------------------------------------------------------
# favorite / unfavorite
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_favorite_article(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Test Article"), user["id"])

    result = await article_workflow.favorite_article(db_session, user["id"], "test-article")
    assert result["favoritesCount"] > 0
    assert result["favorited"] is True


@pytest.mark.asyncio
async def test_favorite_twice_counts_once(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Twice"), user["id"])
    baseline = (await article_workflow.find_by_slug(db_session, "twice"))["favoritesCount"]

    await article_workflow.favorite_article(db_session, user["id"], "twice")
    result = await article_workflow.favorite_article(db_session, user["id"], "twice")

    assert result["favoritesCount"] == baseline + 1
    assert await _count(session_factory, select(func.count()).select_from(favorites)) == 1


@pytest.mark.asyncio
async def test_favorite_twice_without_conflict_safe_insert(
    db_session: AsyncSession, make_user, session_factory, monkeypatch
):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Plain Insert"), user["id"])
    monkeypatch.setattr(database, "_CONFLICT_SAFE_INSERTS", {})

    await article_workflow.favorite_article(db_session, user["id"], "plain-insert")
    result = await article_workflow.favorite_article(db_session, user["id"], "plain-insert")

    assert result["favoritesCount"] == 1
    assert result["favorited"] is True
    assert await _count(session_factory, select(func.count()).select_from(favorites)) == 1


@pytest.mark.asyncio
async def test_unfavorite_without_favorite_is_noop(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Untouched"), user["id"])

    result = await article_workflow.unfavorite_article(db_session, user["id"], "untouched")
    assert result["favoritesCount"] == 0
    assert result["favorited"] is False


@pytest.mark.asyncio
async def test_favorite_then_unfavorite_restores_count(db_session: AsyncSession, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    other = await make_user("other")
    await article_workflow.create_article(db_session, _article("Liked"), author["id"])
    await article_workflow.favorite_article(db_session, other["id"], "liked")
    baseline = (await article_workflow.find_by_slug(db_session, "liked"))["favoritesCount"]

    await article_workflow.favorite_article(db_session, fan["id"], "liked")
    result = await article_workflow.unfavorite_article(db_session, fan["id"], "liked")

    assert baseline == 1
    assert result["favoritesCount"] == baseline


@pytest.mark.asyncio
async def test_favorite_count_tracks_distinct_users(db_session: AsyncSession, make_user):
    author = await make_user("author")
    await article_workflow.create_article(db_session, _article("Popular"), author["id"])
    for name in ("a", "b", "c"):
        fan = await make_user(name)
        await article_workflow.favorite_article(db_session, fan["id"], "popular")

    result = await article_workflow.find_by_slug(db_session, "popular")
    assert result["favoritesCount"] == 3


@pytest.mark.asyncio
async def test_favorite_unknown_article(db_session: AsyncSession, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await article_workflow.favorite_article(db_session, user["id"], "missing")


@pytest.mark.asyncio
async def test_favorite_unknown_user(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Exists"), user["id"])
    with pytest.raises(NotFoundError) as exc_info:
        await article_workflow.favorite_article(db_session, 99999, "exists")
    assert exc_info.value.resource == "User"


@pytest.mark.asyncio
async def test_unfavorite_unknown_article(db_session: AsyncSession, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await article_workflow.unfavorite_article(db_session, user["id"], "missing")


# ---------------------------------------------------------------------------
# delete_article
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_article_keeps_shared_tags(db_session: AsyncSession, make_user, session_factory):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Doomed", ["keep"]), user["id"])
    await article_workflow.favorite_article(db_session, user["id"], "doomed")

    await article_workflow.delete_article(db_session, "doomed", user["id"])

    with pytest.raises(NotFoundError):
        await article_workflow.find_by_slug(db_session, "doomed")
    assert await _count(session_factory, select(func.count()).select_from(Tag)) == 1
    assert await _count(session_factory, select(func.count()).select_from(article_tags)) == 0
    assert await _count(session_factory, select(func.count()).select_from(favorites)) == 0


@pytest.mark.asyncio
async def test_delete_article_by_other_user_is_forbidden(db_session: AsyncSession, make_user):
    author = await make_user("author")
    intruder = await make_user("intruder")
    await article_workflow.create_article(db_session, _article("Mine"), author["id"])

    with pytest.raises(ForbiddenError):
        await article_workflow.delete_article(db_session, "mine", intruder["id"])
    assert (await article_workflow.find_by_slug(db_session, "mine"))["title"] == "Mine"


@pytest.mark.asyncio
async def test_delete_missing_article(db_session: AsyncSession, make_user):
    user = await make_user()
    with pytest.raises(NotFoundError):
        await article_workflow.delete_article(db_session, "missing", user["id"])


# ---------------------------------------------------------------------------
# list_articles
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_articles_filters_by_tag(db_session: AsyncSession, make_user):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("One", ["python"]), user["id"])
    await article_workflow.create_article(db_session, _article("Two", ["rust"]), user["id"])
    await article_workflow.create_article(db_session, _article("Three", ["python", "rust"]), user["id"])

    result = await article_workflow.list_articles(db_session, tag="python")
    assert result["articlesCount"] == 2
    assert {a["slug"] for a in result["articles"]} == {"one", "three"}
    three = next(a for a in result["articles"] if a["slug"] == "three")
    assert three["tagList"] == ["python", "rust"]


@pytest.mark.asyncio
async def test_list_articles_favorited_filter_and_counts(db_session: AsyncSession, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    await article_workflow.create_article(db_session, _article("Liked"), author["id"])
    await article_workflow.create_article(db_session, _article("Ignored"), author["id"])
    await article_workflow.favorite_article(db_session, fan["id"], "liked")

    result = await article_workflow.list_articles(db_session, favorited="fan", viewer_id=fan["id"])
    assert result["articlesCount"] == 1
    assert result["articles"][0]["slug"] == "liked"
    assert result["articles"][0]["favoritesCount"] == 1
    assert result["articles"][0]["favorited"] is True


@pytest.mark.asyncio
async def test_list_articles_pagination(db_session: AsyncSession, make_user):
    user = await make_user()
    for i in range(5):
        await article_workflow.create_article(db_session, _article(f"Article {i}"), user["id"])

    result = await article_workflow.list_articles(db_session, page=3, page_size=2)
    assert result["articlesCount"] == 5
    assert result["pages"] == 3
    assert len(result["articles"]) == 1


# ---------------------------------------------------------------------------
# Transaction scope
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_store_failure_becomes_transient_error(db_session: AsyncSession):
    with pytest.raises(TransientStoreError) as exc_info:
        async with transaction(db_session):
            raise OperationalError("SELECT 1", {}, Exception("connection lost"))
    assert exc_info.value.status_code == 503
    assert not db_session.in_transaction()


def test_integrity_error_becomes_conflict():
    error = translate_db_error(IntegrityError("INSERT", {}, Exception("duplicate key")))
    assert isinstance(error, ConflictError)
    assert error.status_code == 409


@pytest.mark.asyncio
async def test_workflow_inside_outer_transaction_rolls_back_with_it(
    db_session: AsyncSession, session_factory
):
    class Abort(Exception):
        pass

    with pytest.raises(Abort):
        async with transaction(db_session):
            author = User(email="nested@example.com", password="x")
            db_session.add(author)
            await db_session.flush()
            db_session.add(Profile(username="nested", user_id=author.id))
            await db_session.flush()

            result = await article_workflow.create_article(
                db_session, _article("Nested", ["inner"]), author.id
            )
            assert result["slug"] == "nested"
            raise Abort

    assert await _count(session_factory, select(func.count()).select_from(Article)) == 0
    assert await _count(session_factory, select(func.count()).select_from(Tag)) == 0
    assert await _count(session_factory, select(func.count()).select_from(User)) == 0


@pytest.mark.asyncio
async def test_failed_inner_operation_keeps_outer_work(
    db_session: AsyncSession, make_user, session_factory
):
    user = await make_user()
    await article_workflow.create_article(db_session, _article("Taken"), user["id"])

    async with transaction(db_session):
        await article_workflow.create_article(db_session, _article("Kept", ["kept"]), user["id"])
        with pytest.raises(ConflictError):
            await article_workflow.create_article(
                db_session, _article("Taken", ["dropped"]), user["id"]
            )

    slugs = await _count(session_factory, select(func.count()).select_from(Article))
    assert slugs == 2
    names = await _count(
        session_factory, select(func.count()).select_from(Tag).where(Tag.name == "dropped")
    )
    assert names == 0
