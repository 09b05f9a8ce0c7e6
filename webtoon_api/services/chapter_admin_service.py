import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import WEBTOON_IMAGES_BUCKET
from webtoon_api.exceptions import ConflictError, NotFoundError, UploadFailure
from webtoon_api.models.chapter_model import Chapter
from webtoon_api.s3 import BlobStorage, chapter_folder, chapter_pages_folder, chapter_thumbnail_path, delete_quietly
from webtoon_api.services.ingestion_service import UploadedFile

logger = logging.getLogger(__name__)


async def update_chapter(
    session: AsyncSession,
    storage: BlobStorage,
    chapter_id: int,
    *,
    number: Optional[float] = None,
    required_roles: Optional[List[str]] = None,
    thumbnail: Optional[UploadedFile] = None,
    remove_thumbnail: bool = False,
) -> Chapter:
    """Edit chapter metadata. Pages are replaced through ingestion, not here."""
    chapter = await session.get(Chapter, chapter_id)
    if chapter is None:
        raise NotFoundError("Chapter", chapter_id)

    old_thumbnail = chapter.thumbnail_path
    new_thumbnail = old_thumbnail
    uploaded = None

    if thumbnail is not None:
        new_thumbnail = chapter_thumbnail_path(chapter.webtoon_id, chapter.id, thumbnail.filename)
        try:
            await storage.upload(WEBTOON_IMAGES_BUCKET, new_thumbnail, thumbnail.data, thumbnail.content_type)
        except Exception as e:
            raise UploadFailure("thumbnail", e) from e
        uploaded = new_thumbnail
    elif remove_thumbnail:
        new_thumbnail = None

    if number is not None:
        chapter.number = float(number)
    if required_roles is not None:
        chapter.required_roles = list(required_roles)
    chapter.thumbnail_path = new_thumbnail

    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if uploaded and uploaded != old_thumbnail:
            await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, [uploaded])
        raise ConflictError(f"Chapter {number} already exists for this webtoon") from e

    if old_thumbnail and old_thumbnail != new_thumbnail:
        await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, [old_thumbnail])

    await session.refresh(chapter)
    return chapter


async def delete_chapter(session: AsyncSession, storage: BlobStorage, chapter_id: int) -> None:
    """Delete the row (pages cascade) and everything stored under the chapter folder."""
    chapter = await session.scalar(select(Chapter).where(Chapter.id == chapter_id))
    if chapter is None:
        raise NotFoundError("Chapter", chapter_id)

    webtoon_id = chapter.webtoon_id
    thumbnail = chapter.thumbnail_path

    for folder in (chapter_pages_folder(webtoon_id, chapter_id), chapter_folder(webtoon_id, chapter_id)):
        try:
            await storage.remove_folder(WEBTOON_IMAGES_BUCKET, folder)
        except Exception as e:
            logger.error("Error deleting chapter folder contents (%s): %s", folder, e)
    if thumbnail:
        await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, [thumbnail])

    await session.delete(chapter)
    await session.commit()
