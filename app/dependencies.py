from fastapi import Header, Query

from app.config import settings
from app.services.article_service import ArticleWorkflowService, article_workflow


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, at most ``settings.MAX_PAGE_SIZE``.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=settings.MAX_PAGE_SIZE,
            description="Number of items returned per page.",
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size


def get_current_user_id(x_user_id: int | None = Header(None)) -> int | None:
    """
    Acting user id taken from the ``X-User-Id`` header.

    Token issuance and verification happen in front of this service; the
    header carries the already-authenticated id, or nothing for anonymous
    reads.
    """
    return x_user_id


def get_article_service() -> ArticleWorkflowService:
    return article_workflow
