from datetime import datetime
from typing import List, Optional

from fastapi import Form
from pydantic import BaseModel

from webtoon_api.schemas.chapter_schemas import ChapterSummaryOut


def _split_tags(raw: Optional[str]) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


class WebtoonCreate(BaseModel):
    title: str
    description: str = ""
    tags: List[str] = []
    is_banner: bool = False
    show_public_views: bool = False

    @classmethod
    def as_form(
            cls,
            title: str = Form(...),
            description: str = Form(""),
            tags: str = Form(""),
            is_banner: bool = Form(False),
            show_public_views: bool = Form(False),
    ) -> "WebtoonCreate":
        return cls(
            title=title,
            description=description,
            tags=_split_tags(tags),
            is_banner=is_banner,
            show_public_views=show_public_views,
        )


class WebtoonUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    is_banner: Optional[bool] = None
    show_public_views: Optional[bool] = None
    remove_cover: bool = False
    remove_banner: bool = False

    @classmethod
    def as_form(
            cls,
            title: Optional[str] = Form(None),
            description: Optional[str] = Form(None),
            tags: Optional[str] = Form(None),
            is_banner: Optional[bool] = Form(None),
            show_public_views: Optional[bool] = Form(None),
            remove_cover: bool = Form(False),
            remove_banner: bool = Form(False),
    ) -> "WebtoonUpdate":
        return cls(
            title=title,
            description=description,
            tags=_split_tags(tags) if tags is not None else None,
            is_banner=is_banner,
            show_public_views=show_public_views,
            remove_cover=remove_cover,
            remove_banner=remove_banner,
        )


class WebtoonOut(BaseModel):
    id: str
    title: str
    slug: str
    description: Optional[str] = ""
    tags: List[str] = []
    cover_image_url: Optional[str] = None
    banner_image_url: Optional[str] = None
    views: int = 0
    show_public_views: bool = False
    is_banner: bool = False
    chapter_count: int = 0
    created_at: Optional[datetime] = None


class WebtoonDetailOut(WebtoonOut):
    chapters: List[ChapterSummaryOut] = []
    read_chapter_ids: List[int] = []
    is_favorite: bool = False
