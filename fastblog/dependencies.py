from fastapi import Query

from fastblog.config import settings


def clamp_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    """
    Normalise caller-supplied paging: ``page`` is at least 1 and ``limit``
    lies in ``[1, MAX_PAGE_SIZE]``.  Out-of-range values are clamped, not
    rejected.
    """
    page = max(1, page if page is not None else 1)
    if limit is None:
        limit = settings.DEFAULT_PAGE_SIZE
    limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
    return page, limit


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination query parameters.

    Usage in a router::

        @router.get("/articles")
        async def list_articles(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    page:
        1-based page number.
    limit:
        Items per page, clamped to ``settings.MAX_PAGE_SIZE``.
    offset:
        SQL OFFSET derived from *page* and *limit*.
    """

    def __init__(
        self,
        page: int = Query(1, description="Page number (1-based)."),
        limit: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            description="Items per page (values above the maximum are clamped).",
        ),
    ) -> None:
        self.page, self.limit = clamp_pagination(page, limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
