from pydantic import BaseModel, ConfigDict, Field


# --- User ---

class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255)
    password: str = Field(min_length=1)
    bio: str | None = None
    image: str | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    username: str
    bio: str | None = None
    image: str | None = None


class UserEnvelope(BaseModel):
    user: UserCreate


# --- Profile ---

class ProfileResponse(BaseModel):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ProfileEnvelope(BaseModel):
    profile: ProfileResponse


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(max_length=300)
    description: str = Field("", max_length=500)
    body: str = ""
    tag_list: list[str] = Field(default_factory=list, alias="tagList")

    model_config = ConfigDict(populate_by_name=True)


class ArticleCreateEnvelope(BaseModel):
    article: ArticleCreate


class ArticleResponse(BaseModel):
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str] = Field(alias="tagList")
    created_at: str | None = Field(None, alias="createdAt")
    updated_at: str | None = Field(None, alias="updatedAt")
    favorited: bool
    favorites_count: int = Field(alias="favoritesCount")
    author: ProfileResponse

    model_config = ConfigDict(populate_by_name=True)


class ArticleEnvelope(BaseModel):
    article: ArticleResponse


# --- Pagination ---

class ArticleListResponse(BaseModel):
    articles: list[ArticleResponse]
    articles_count: int = Field(alias="articlesCount")
    page: int
    page_size: int
    pages: int

    model_config = ConfigDict(populate_by_name=True)


# --- Tags ---

class TagListResponse(BaseModel):
    tags: list[str]
