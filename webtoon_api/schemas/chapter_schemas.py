from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChapterLink(BaseModel):
    id: int
    number: float


class PageOut(BaseModel):
    id: int
    page_number: int
    url: Optional[str] = None


class ChapterView(BaseModel):
    id: int
    number: float
    webtoon_id: str
    webtoon_title: str = ""
    webtoon_slug: str = ""
    webtoon_show_public_views: bool = False
    thumbnail_url: Optional[str] = None
    views: int = 0
    created_at: Optional[datetime] = None
    required_roles: List[str] = []
    pages: List[PageOut] = []
    access_denied: Literal[False] = False
    previous: Optional[ChapterLink] = None
    next: Optional[ChapterLink] = None


class RestrictedChapterView(BaseModel):
    """What a requester without the right role gets: no page references at all."""
    id: int
    number: float
    webtoon_id: str
    webtoon_title: str = ""
    webtoon_slug: str = ""
    access_denied: Literal[True] = True
    required_roles: List[str] = []
    pages: List[PageOut] = []


class ChapterSummaryOut(BaseModel):
    id: int
    number: float
    created_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
    views: int = 0
    required_roles: List[str] = []
    access_denied: bool = False
    webtoon_id: str
    webtoon_title: Optional[str] = None
    webtoon_show_public_views: bool = False


class NeighboursOut(BaseModel):
    previous: Optional[ChapterLink] = None
    next: Optional[ChapterLink] = None


class ChapterManifestItem(BaseModel):
    """One chapter of a multipart batch upload; file names refer to the uploaded parts."""
    number: float
    required_roles: List[str] = []
    thumbnail: Optional[str] = None
    pages: List[str] = Field(min_length=1)


class ChapterIngestResultOut(BaseModel):
    number: float
    success: bool
    error: Optional[str] = None
    chapter_id: Optional[int] = None


class BatchIngestOut(BaseModel):
    results: List[ChapterIngestResultOut]
    all_succeeded: bool
    failed_numbers: List[float] = []


class RandomChapterOut(BaseModel):
    webtoon_id: str
    chapter_id: int
    link: str
