from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BoardType = Literal["free", "brand", "market", "gear"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PostCreateRequest(_CamelModel):
    """
    커뮤니티 글 작성 요청. content 는 저장 전에 HTML 정제된다.
    Community post creation; content is sanitized before storage.
    """

    type: BoardType
    title: Annotated[str, Field(min_length=1, max_length=200)]
    content: Annotated[str, Field(min_length=1)]
    brand: Annotated[str | None, Field(max_length=100)] = None
    category: str = "general"
    images: Annotated[list[str], Field(max_length=10)] = []


class PostUpdateRequest(_CamelModel):
    title: Annotated[str | None, Field(min_length=1, max_length=200)] = None
    content: str | None = None
    brand: Annotated[str | None, Field(max_length=100)] = None
    category: str | None = None
    images: Annotated[list[str] | None, Field(max_length=10)] = None
    client_seen_date: Annotated[
        str | None,
        Field(description="클라이언트가 마지막으로 본 updatedAt / Last updatedAt the client saw."),
    ] = None


class CommentCreateRequest(BaseModel):
    content: Annotated[str, Field(min_length=1, max_length=1000)]


class ReportRequest(BaseModel):
    reason: Annotated[str, Field(min_length=10, max_length=500)]


class ReportStatusRequest(BaseModel):
    action: Literal["resolve", "reject", "resolve_hide_target"]


class AdminPostStatusRequest(BaseModel):
    status: Literal["public", "hidden"]
