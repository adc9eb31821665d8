from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import PaginationParams, get_article_service, get_current_user_id
from app.schemas import ArticleCreateEnvelope, ArticleEnvelope, ArticleListResponse
from app.services.article_service import ArticleWorkflowService

router = APIRouter(prefix="/api/articles", tags=["articles"])


@router.get("", response_model=ArticleListResponse)
async def list_articles(
    pagination: PaginationParams = Depends(),
    tag: str | None = Query(None),
    author: str | None = Query(None),
    favorited: str | None = Query(None),
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    return await service.list_articles(
        db,
        pagination.page,
        pagination.page_size,
        tag=tag,
        author=author,
        favorited=favorited,
        viewer_id=user_id,
    )


@router.post("", status_code=201, response_model=ArticleEnvelope)
async def create_article(
    payload: ArticleCreateEnvelope,
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await service.create_article(db, payload.article, user_id)}


@router.get("/{slug}", response_model=ArticleEnvelope)
async def get_article(
    slug: str,
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await service.find_by_slug(db, slug, viewer_id=user_id)}


@router.delete("/{slug}", status_code=204)
async def delete_article(
    slug: str,
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    await service.delete_article(db, slug, user_id)


@router.post("/{slug}/favorite", response_model=ArticleEnvelope)
async def favorite_article(
    slug: str,
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await service.favorite_article(db, user_id, slug)}


@router.delete("/{slug}/favorite", response_model=ArticleEnvelope)
async def unfavorite_article(
    slug: str,
    user_id: int | None = Depends(get_current_user_id),
    service: ArticleWorkflowService = Depends(get_article_service),
    db: AsyncSession = Depends(get_db),
):
    return {"article": await service.unfavorite_article(db, user_id, slug)}
