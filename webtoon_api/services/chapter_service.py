"""Reader side of chapters: access-resolved chapter views and listings."""
import logging
import random
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from webtoon_api.config import (
    LATEST_CHAPTERS_LIMIT,
    NAVIGATION_SCAN_BATCH,
    SIGNED_PAGE_URLS,
    SIGNED_URL_TTL,
    WEBTOON_IMAGES_BUCKET,
)
from webtoon_api.exceptions import NotFoundError
from webtoon_api.models.chapter_model import Chapter
from webtoon_api.models.user_model import ChapterRead
from webtoon_api.models.webtoon_model import Webtoon
from webtoon_api.s3 import BlobStorage, resolve_url
from webtoon_api.schemas.chapter_schemas import (
    ChapterLink,
    ChapterSummaryOut,
    ChapterView,
    NeighboursOut,
    PageOut,
    RestrictedChapterView,
)
from webtoon_api.services.permission_service import annotate_access, can_access

logger = logging.getLogger(__name__)

PREVIOUS = "previous"
NEXT = "next"


async def resolve_chapter(
    session: AsyncSession,
    storage: BlobStorage,
    chapter_id: int,
    user_id: Optional[int],
    user_role: Optional[str],
    *,
    signed_urls: bool = SIGNED_PAGE_URLS,
    scan_batch: int = NAVIGATION_SCAN_BATCH,
) -> Union[ChapterView, RestrictedChapterView]:
    """
    Build the reading view of one chapter for one requester.

    Raises NotFoundError for an unknown chapter. A requester without access
    gets a RestrictedChapterView that carries no page references. Otherwise
    the view holds the ordered, URL-resolved pages plus the nearest previous
    and next chapters this requester can open. View counting and read
    tracking run afterwards and never fail the call.
    """
    chapter = await session.scalar(
        select(Chapter)
        .options(joinedload(Chapter.webtoon), selectinload(Chapter.pages))
        .where(Chapter.id == chapter_id)
    )
    if chapter is None:
        raise NotFoundError("Chapter", chapter_id)

    webtoon = chapter.webtoon
    required_roles = list(chapter.required_roles or [])

    if not can_access(user_id, user_role, required_roles):
        logger.info(
            "User %s (role: %s) denied access to chapter %s requiring roles: %s",
            user_id, user_role, chapter_id, ", ".join(required_roles),
        )
        return RestrictedChapterView(
            id=chapter.id,
            number=chapter.number,
            webtoon_id=chapter.webtoon_id,
            webtoon_title=webtoon.title if webtoon else "",
            webtoon_slug=webtoon.slug if webtoon else "",
            required_roles=required_roles,
        )

    pages = []
    for page in sorted(chapter.pages, key=lambda p: p.page_number):
        url = await resolve_url(
            storage, WEBTOON_IMAGES_BUCKET, page.image_path,
            signed=signed_urls, ttl=SIGNED_URL_TTL,
        )
        pages.append(PageOut(id=page.id, page_number=page.page_number, url=url))

    view = ChapterView(
        id=chapter.id,
        number=chapter.number,
        webtoon_id=chapter.webtoon_id,
        webtoon_title=webtoon.title if webtoon else "",
        webtoon_slug=webtoon.slug if webtoon else "",
        webtoon_show_public_views=bool(webtoon.show_public_views) if webtoon else False,
        thumbnail_url=storage.get_public_url(WEBTOON_IMAGES_BUCKET, chapter.thumbnail_path)
        if chapter.thumbnail_path else None,
        views=chapter.views or 0,
        created_at=chapter.created_at,
        required_roles=required_roles,
        pages=pages,
    )

    neighbours = await get_previous_and_next(
        session, chapter.webtoon_id, chapter.number, user_id, user_role, batch_size=scan_batch
    )
    view.previous = neighbours.previous
    view.next = neighbours.next

    await increment_chapter_view(session, chapter.id)
    if user_id is not None:
        await mark_chapter_as_read(session, user_id, chapter.id)

    return view


async def get_previous_and_next(
    session: AsyncSession,
    webtoon_id: str,
    current_number: float,
    user_id: Optional[int],
    user_role: Optional[str],
    *,
    batch_size: int = NAVIGATION_SCAN_BATCH,
) -> NeighboursOut:
    previous = await _find_accessible_neighbour(
        session, webtoon_id, current_number, PREVIOUS, user_id, user_role, batch_size
    )
    following = await _find_accessible_neighbour(
        session, webtoon_id, current_number, NEXT, user_id, user_role, batch_size
    )
    return NeighboursOut(previous=previous, next=following)


async def _find_accessible_neighbour(
    session: AsyncSession,
    webtoon_id: str,
    current_number: float,
    direction: str,
    user_id: Optional[int],
    user_role: Optional[str],
    batch_size: int,
) -> Optional[ChapterLink]:
    # Keyset scan: chapter numbers are unique per webtoon, so the last number
    # seen bounds the next batch.
    cursor = current_number
    while True:
        stmt = select(Chapter.id, Chapter.number, Chapter.required_roles).where(
            Chapter.webtoon_id == webtoon_id
        )
        if direction == PREVIOUS:
            stmt = stmt.where(Chapter.number < cursor).order_by(Chapter.number.desc())
        else:
            stmt = stmt.where(Chapter.number > cursor).order_by(Chapter.number.asc())

        candidates = (await session.execute(stmt.limit(batch_size))).all()
        for cid, number, required_roles in candidates:
            if can_access(user_id, user_role, required_roles):
                return ChapterLink(id=cid, number=number)

        if len(candidates) < batch_size:
            return None
        cursor = candidates[-1].number


async def increment_chapter_view(session: AsyncSession, chapter_id: int) -> None:
    """Bump the chapter and webtoon view counters. Best effort."""
    try:
        webtoon_id = await session.scalar(select(Chapter.webtoon_id).where(Chapter.id == chapter_id))
        await session.execute(
            update(Chapter).where(Chapter.id == chapter_id).values(views=Chapter.views + 1)
        )
        if webtoon_id is not None:
            await session.execute(
                update(Webtoon).where(Webtoon.id == webtoon_id).values(views=Webtoon.views + 1)
            )
        await session.commit()
    except Exception as e:
        logger.error("Error incrementing chapter view for %s: %s", chapter_id, e)
        await session.rollback()


async def mark_chapter_as_read(session: AsyncSession, user_id: int, chapter_id: int) -> None:
    """Idempotent upsert of (user, chapter) read state. Best effort."""
    if user_id is None or chapter_id is None:
        return
    try:
        existing = await session.scalar(
            select(ChapterRead).where(
                ChapterRead.user_id == user_id, ChapterRead.chapter_id == chapter_id
            )
        )
        now = datetime.now(timezone.utc)
        if existing:
            existing.read_at = now
        else:
            session.add(ChapterRead(user_id=user_id, chapter_id=chapter_id, read_at=now))
        await session.commit()
    except Exception as e:
        logger.error("Error marking chapter %s as read for user %s: %s", chapter_id, user_id, e)
        await session.rollback()


def _summary(chapter: Chapter, storage: BlobStorage, allowed: bool) -> ChapterSummaryOut:
    webtoon = chapter.webtoon
    return ChapterSummaryOut(
        id=chapter.id,
        number=chapter.number,
        created_at=chapter.created_at,
        thumbnail_url=storage.get_public_url(WEBTOON_IMAGES_BUCKET, chapter.thumbnail_path)
        if chapter.thumbnail_path else None,
        views=chapter.views or 0,
        required_roles=list(chapter.required_roles or []),
        access_denied=not allowed,
        webtoon_id=chapter.webtoon_id,
        webtoon_title=webtoon.title if webtoon else None,
        webtoon_show_public_views=bool(webtoon.show_public_views) if webtoon else False,
    )


async def list_latest_chapters(
    session: AsyncSession,
    storage: BlobStorage,
    user_id: Optional[int],
    user_role: Optional[str],
    limit: int = LATEST_CHAPTERS_LIMIT,
) -> List[ChapterSummaryOut]:
    rows = (
        await session.execute(
            select(Chapter)
            .options(joinedload(Chapter.webtoon))
            .order_by(Chapter.created_at.desc(), Chapter.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    return [_summary(c, storage, allowed) for c, allowed in annotate_access(rows, user_id, user_role)]


async def list_webtoon_chapters(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    user_id: Optional[int],
    user_role: Optional[str],
) -> List[ChapterSummaryOut]:
    rows = (
        await session.execute(
            select(Chapter)
            .options(joinedload(Chapter.webtoon))
            .where(Chapter.webtoon_id == webtoon_id)
            .order_by(Chapter.number.asc())
        )
    ).scalars().all()
    return [_summary(c, storage, allowed) for c, allowed in annotate_access(rows, user_id, user_role)]


async def get_read_chapter_ids(session: AsyncSession, user_id: Optional[int], webtoon_id: str) -> List[int]:
    if not user_id or not webtoon_id:
        return []
    result = await session.execute(
        select(ChapterRead.chapter_id)
        .join(Chapter, Chapter.id == ChapterRead.chapter_id)
        .where(ChapterRead.user_id == user_id, Chapter.webtoon_id == webtoon_id)
    )
    return [row[0] for row in result.all()]


async def random_accessible_chapter(
    session: AsyncSession, user_id: Optional[int], user_role: Optional[str]
) -> Optional[tuple]:
    """(webtoon_id, chapter_id) of a random chapter this requester can open, or None."""
    rows = (
        await session.execute(select(Chapter.id, Chapter.webtoon_id, Chapter.required_roles))
    ).all()
    accessible = [r for r in rows if can_access(user_id, user_role, r.required_roles)]
    if not accessible:
        return None
    picked = random.choice(accessible)
    return picked.webtoon_id, picked.id
