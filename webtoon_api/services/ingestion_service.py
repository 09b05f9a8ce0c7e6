"""
Batched chapter ingestion.

Chapters of one webtoon are uploaded one after another. For each chapter the
row is upserted by (webtoon, number), any previous pages are wiped, the
thumbnail and pages go to storage (pages in bounded-concurrency windows), the
page rows are written and favoriting users are notified. A failing chapter
is reported and the batch moves on to the next one.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import MAX_CONCURRENT_PAGE_UPLOADS, WEBTOON_IMAGES_BUCKET
from webtoon_api.exceptions import NotFoundError, PersistFailure, UploadFailure
from webtoon_api.models.chapter_model import Chapter, Page
from webtoon_api.models.webtoon_model import Webtoon
from webtoon_api.s3 import (
    BlobStorage,
    chapter_page_path,
    chapter_pages_folder,
    chapter_thumbnail_path,
    delete_quietly,
)
from webtoon_api.services.batching import ProgressCounter, run_in_batches
from webtoon_api.services.notification_service import FavoriteNotifier, NewChapterEvent

logger = logging.getLogger(__name__)

# Progress milestones of one chapter item
CHAPTER_ROW_DONE = 10
THUMBNAIL_DONE = 20
PAGES_UPLOADED = 90
DONE = 100


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class ChapterUpload:
    number: float
    pages: List[UploadedFile] = field(default_factory=list)
    thumbnail: Optional[UploadedFile] = None
    required_roles: List[str] = field(default_factory=list)


@dataclass
class ChapterIngestResult:
    number: float
    success: bool = False
    error: Optional[str] = None
    chapter_id: Optional[int] = None
    status: ItemStatus = ItemStatus.PENDING
    progress: int = 0


@dataclass
class BatchIngestResult:
    results: List[ChapterIngestResult]

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed_numbers(self) -> List[float]:
        return [r.number for r in self.results if not r.success]


# (index, number, percent, status, message)
ChapterProgressCallback = Callable[[int, float, int, ItemStatus, Optional[str]], None]
OverallProgressCallback = Callable[[float], None]
Notifier = Callable[[AsyncSession, NewChapterEvent], Awaitable[object]]

# One lock per (webtoon, chapter number) so two ingestions of the same
# chapter in this process cannot interleave their delete/re-insert steps.
_chapter_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()


def _chapter_lock(webtoon_id: str, number: float) -> asyncio.Lock:
    key = (str(webtoon_id), float(number))
    lock = _chapter_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _chapter_locks[key] = lock
    return lock


async def ingest_chapters(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    chapters: Sequence[ChapterUpload],
    *,
    on_overall_progress: Optional[OverallProgressCallback] = None,
    on_chapter_progress: Optional[ChapterProgressCallback] = None,
    notifier: Optional[Notifier] = None,
    concurrency: int = MAX_CONCURRENT_PAGE_UPLOADS,
) -> BatchIngestResult:
    """
    Upload and persist every chapter in order; never raises for a single
    chapter's failure. Only a missing webtoon aborts the whole call.
    """
    webtoon_title = await session.scalar(select(Webtoon.title).where(Webtoon.id == webtoon_id))
    if webtoon_title is None:
        raise NotFoundError("Webtoon", webtoon_id)

    if notifier is None:
        notifier = FavoriteNotifier()

    total = len(chapters)
    results = [ChapterIngestResult(number=float(c.number)) for c in chapters]

    for index, upload in enumerate(chapters):
        result = results[index]

        def report(percent: int, status: ItemStatus, message: Optional[str] = None,
                   _index=index, _result=result) -> None:
            _result.progress = percent
            _result.status = status
            if on_chapter_progress:
                on_chapter_progress(_index, _result.number, percent, status, message)

        try:
            await _ingest_one(
                session, storage, webtoon_id, webtoon_title, upload, result, report,
                notifier, concurrency,
            )
        except Exception as e:
            logger.error("Error processing chapter %s (index %d): %s", upload.number, index, e)
            result.success = False
            result.error = str(e)
            report(result.progress, ItemStatus.ERROR, str(e))

        if on_overall_progress:
            on_overall_progress((index + 1) / total * 100)

    return BatchIngestResult(results=results)


async def _ingest_one(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    webtoon_title: str,
    upload: ChapterUpload,
    result: ChapterIngestResult,
    report: Callable[..., None],
    notifier: Notifier,
    concurrency: int,
) -> None:
    number = float(upload.number)
    # Assets written by this call that no committed row points at yet
    unpersisted: List[str] = []

    report(0, ItemStatus.PROCESSING)
    async with _chapter_lock(webtoon_id, number):
        try:
            chapter = await _upsert_chapter_entry(session, storage, webtoon_id, number, upload.required_roles)
            result.chapter_id = chapter.id
            report(CHAPTER_ROW_DONE, ItemStatus.PROCESSING)

            if upload.thumbnail is not None:
                await _replace_thumbnail(session, storage, webtoon_id, chapter, upload.thumbnail, unpersisted)
            report(THUMBNAIL_DONE, ItemStatus.PROCESSING)

            page_rows = await _upload_pages(
                storage, webtoon_id, chapter.id, upload.pages, unpersisted, report, concurrency
            )

            try:
                session.add_all(page_rows)
                await session.commit()
            except SQLAlchemyError as e:
                raise PersistFailure(f"Failed to insert page records: {e}") from e
            unpersisted.clear()
            report(PAGES_UPLOADED, ItemStatus.PROCESSING)
        except Exception:
            await session.rollback()
            if unpersisted:
                logger.info("Cleaning up %d unpersisted asset(s) of chapter %s", len(unpersisted), number)
                await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, unpersisted)
            raise

    result.success = True
    await _notify(session, notifier, NewChapterEvent(
        chapter_id=result.chapter_id,
        webtoon_id=webtoon_id,
        chapter_number=number,
        webtoon_title=webtoon_title,
    ))
    report(DONE, ItemStatus.SUCCESS)


async def _upsert_chapter_entry(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    number: float,
    required_roles: Sequence[str],
) -> Chapter:
    """
    Existing chapter with this number: keep its id and views, take the new
    roles and drop every page row and page asset (full replace). Otherwise
    insert a fresh chapter row.
    """
    try:
        chapter = await session.scalar(
            select(Chapter).where(Chapter.webtoon_id == webtoon_id, Chapter.number == number)
        )
        if chapter is None:
            chapter = Chapter(
                webtoon_id=webtoon_id,
                number=number,
                views=0,
                thumbnail_path=None,
                required_roles=list(required_roles or []),
            )
            session.add(chapter)
            await session.commit()
            return chapter

        chapter.required_roles = list(required_roles or [])
        old_page_paths = (
            await session.execute(select(Page.image_path).where(Page.chapter_id == chapter.id))
        ).scalars().all()
        await session.execute(delete(Page).where(Page.chapter_id == chapter.id))
        await session.commit()
    except SQLAlchemyError as e:
        raise PersistFailure(f"Failed to upsert chapter {number}: {e}") from e

    folder = chapter_pages_folder(webtoon_id, chapter.id)
    stored = [f"{folder}/{name}" for name in await storage.list(WEBTOON_IMAGES_BUCKET, folder)]
    stale = sorted(set(stored) | {p for p in old_page_paths if p})
    if stale:
        await storage.remove(WEBTOON_IMAGES_BUCKET, stale)
    return chapter


async def _replace_thumbnail(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    chapter: Chapter,
    thumbnail: UploadedFile,
    unpersisted: List[str],
) -> None:
    old_path = chapter.thumbnail_path
    new_path = chapter_thumbnail_path(webtoon_id, chapter.id, thumbnail.filename)
    try:
        await storage.upload(WEBTOON_IMAGES_BUCKET, new_path, thumbnail.data, thumbnail.content_type)
    except Exception as e:
        raise UploadFailure("thumbnail", e) from e
    if new_path != old_path:
        unpersisted.append(new_path)

    try:
        chapter.thumbnail_path = new_path
        await session.commit()
    except SQLAlchemyError as e:
        raise PersistFailure(f"Failed to save chapter thumbnail: {e}") from e
    if new_path in unpersisted:
        unpersisted.remove(new_path)

    if old_path and old_path != new_path:
        await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, [old_path])


async def _upload_pages(
    storage: BlobStorage,
    webtoon_id: str,
    chapter_id: int,
    files: Sequence[UploadedFile],
    unpersisted: List[str],
    report: Callable[..., None],
    concurrency: int,
) -> List[Page]:
    if not files:
        return []

    counter = ProgressCounter(len(files), THUMBNAIL_DONE, PAGES_UPLOADED)
    # Numbers come from the caller's ordering and are fixed before any upload starts
    planned = [
        (position + 1, f, chapter_page_path(webtoon_id, chapter_id, position + 1, f.filename))
        for position, f in enumerate(files)
    ]

    def make_task(page_number: int, page_file: UploadedFile, path: str):
        async def task() -> Page:
            try:
                await storage.upload(WEBTOON_IMAGES_BUCKET, path, page_file.data, page_file.content_type)
            except Exception as e:
                logger.error("Error uploading page %d for chapter %s: %s", page_number, chapter_id, e)
                report(counter.value, ItemStatus.PROCESSING, f"Page {page_number} failed")
                raise UploadFailure(f"page {page_number}", e) from e
            unpersisted.append(path)
            report(counter.advance(), ItemStatus.PROCESSING)
            return Page(chapter_id=chapter_id, page_number=page_number, image_path=path)
        return task

    outcomes = await run_in_batches(
        [make_task(*p) for p in planned], concurrency, stop_on_error=True
    )

    failed = [o for o in outcomes if o.error is not None]
    if len(failed) == 1:
        raise failed[0].error
    if failed:
        first = failed[0].error
        numbers = ", ".join(str(planned[o.index][0]) for o in failed)
        raise UploadFailure(f"pages {numbers}", getattr(first, "cause", None) or first) from first

    return [o.result for o in outcomes]


async def _notify(session: AsyncSession, notifier: Notifier, event: NewChapterEvent) -> None:
    try:
        await notifier(session, event)
    except Exception as e:
        logger.error("Error sending notifications for chapter %s: %s", event.chapter_number, e)
        await session.rollback()
