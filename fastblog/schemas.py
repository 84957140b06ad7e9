from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from fastblog.models import ArticleStatus

# Tag and category names share the String(100) column width.
TermName = Annotated[str, Field(min_length=1, max_length=100)]


# --- User ---

class UserBase(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(max_length=255)
    display_name: str | None = Field(None, max_length=150)
    bio: str | None = None
    avatar_url: str | None = None


class UserCreate(UserBase):
    pass


class UserResponse(UserBase):
    id: int
    is_verified: bool = False
    followers_count: int = 0
    following_count: int = 0
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class FollowResponse(BaseModel):
    following: bool
    changed: bool
    followers_count: int


# --- Article requests ---

class ArticleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    subtitle: str | None = Field(None, max_length=300)
    content: str = Field(min_length=1)
    excerpt: str | None = Field(None, max_length=500)
    featured_image_url: str | None = None
    publication_id: int | None = None
    tags: list[TermName] = Field(default_factory=list, max_length=10)
    categories: list[TermName] = Field(default_factory=list, max_length=5)
    is_member_only: bool = False
    paywall_position: int | None = None
    status: ArticleStatus = ArticleStatus.DRAFT


class ArticleUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    subtitle: str | None = Field(None, max_length=300)
    content: str | None = Field(None, min_length=1)
    excerpt: str | None = Field(None, max_length=500)
    featured_image_url: str | None = None
    tags: list[TermName] | None = Field(None, max_length=10)
    categories: list[TermName] | None = Field(None, max_length=5)
    is_member_only: bool | None = None
    paywall_position: int | None = None


class AutoSaveRequest(BaseModel):
    article_id: int | None = None  # None mints a new draft
    title: str | None = Field(None, max_length=200)
    subtitle: str | None = Field(None, max_length=300)
    content: str = ""
    excerpt: str | None = Field(None, max_length=500)
    featured_image_url: str | None = None
    tags: list[TermName] | None = Field(None, max_length=10)
    categories: list[TermName] | None = Field(None, max_length=5)
    is_member_only: bool | None = None
    paywall_position: int | None = None


class AutoSaveResponse(BaseModel):
    article_id: int
    slug: str
    auto_save_version: int
    last_auto_save: datetime | None


# --- Article responses ---

class ArticleAuthor(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    followers_count: int = 0
    is_verified: bool = False


class UserInteractions(BaseModel):
    has_clapped: bool
    clap_count: int
    has_bookmarked: bool
    is_following_author: bool


class ArticleView(BaseModel):
    id: int
    title: str
    subtitle: str | None
    content: str
    content_html: str
    excerpt: str | None
    featured_image_url: str | None
    author: ArticleAuthor
    publication_id: int | None
    status: ArticleStatus
    is_member_only: bool
    paywall_position: int | None
    is_featured: bool
    slug: str
    tags: list[str]
    categories: list[str]
    reading_time_minutes: int
    claps_count: int
    comments_count: int
    bookmarks_count: int
    views_count: int
    reads_count: int
    published_at: datetime | None
    created_at: datetime
    updated_at: datetime
    last_auto_save: datetime | None
    auto_save_version: int
    # None for anonymous viewers: "not personalised", distinct from all-false.
    user_interactions: UserInteractions | None = None
    share_url: str
    share_title: str
    share_description: str
    trending_score: float | None = None


class ArticleStats(BaseModel):
    article_id: int
    title: str
    views_count: int
    reads_count: int
    claps_count: int
    comments_count: int
    bookmarks_count: int
    reading_time_minutes: int
    published_at: datetime | None
    engagement_rate: float


class AuthorStats(BaseModel):
    total_articles: int
    total_views: int
    total_reads: int
    total_claps: int
    total_comments: int
    total_bookmarks: int
    average_reading_time: float
    average_engagement_rate: float
    top_articles: list[ArticleStats] = []


# --- Engagement ---

class ClapRequest(BaseModel):
    clap_count: int = Field(1, ge=1, le=50)


class ClapResponse(BaseModel):
    claps_count: int
    has_clapped: bool
    user_clap_count: int


class BookmarkResponse(BaseModel):
    bookmarked: bool
    changed: bool
    bookmarks_count: int


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    parent_id: int | None = None


class CommentAuthor(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    is_verified: bool = False


class CommentResponse(BaseModel):
    id: int
    article_id: int
    content: str
    content_html: str
    author: CommentAuthor
    parent_id: int | None
    claps_count: int
    replies_count: int
    is_author_reply: bool
    created_at: datetime
    updated_at: datetime
    replies: list["CommentResponse"] | None = None


# --- Search ---

class SearchSort(str, Enum):
    RELEVANCE = "relevance"
    RECENT = "recent"
    POPULAR = "popular"
    CLAPS = "claps"


class SearchAuthor(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


class SearchArticleResult(BaseModel):
    id: int
    title: str
    subtitle: str | None
    excerpt: str
    slug: str
    author: SearchAuthor
    tags: list[str] = []
    claps_count: int
    views_count: int
    reading_time_minutes: int
    published_at: datetime | None
    relevance_score: float


class SearchUserResult(BaseModel):
    id: int
    username: str
    display_name: str | None
    bio: str | None
    avatar_url: str | None
    followers_count: int
    articles_count: int
    is_verified: bool
    relevance_score: float


class SearchResults(BaseModel):
    articles: list[SearchArticleResult]
    users: list[SearchUserResult]


class SearchResponse(BaseModel):
    query: str
    total_results: int
    results: SearchResults
    suggestions: list[str]


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_articles: int
    published_articles: int
    total_comments: int
    total_users: int
    avg_comments_per_article: float
    rate_limit_info: dict = {}


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list  # Typed per router
    total: int
    page: int
    limit: int
    pages: int


CommentResponse.model_rebuild()
