import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import WEBTOON_IMAGES_BUCKET
from webtoon_api.exceptions import NotFoundError, PersistFailure, UploadFailure
from webtoon_api.models.chapter_model import Chapter
from webtoon_api.models.user_model import UserFavorite
from webtoon_api.models.webtoon_model import Webtoon
from webtoon_api.s3 import (
    BlobStorage,
    chapter_folder,
    chapter_pages_folder,
    delete_quietly,
    webtoon_folder,
    webtoon_image_path,
)
from webtoon_api.schemas.webtoon_schemas import WebtoonCreate, WebtoonOut, WebtoonUpdate
from webtoon_api.services.ingestion_service import UploadedFile
from webtoon_api.utils.slugify import slugify

logger = logging.getLogger(__name__)


def to_out(webtoon: Webtoon, storage: BlobStorage, chapter_count: int = 0) -> WebtoonOut:
    return WebtoonOut(
        id=webtoon.id,
        title=webtoon.title,
        slug=webtoon.slug,
        description=webtoon.description or "",
        tags=list(webtoon.tags or []),
        cover_image_url=storage.get_public_url(WEBTOON_IMAGES_BUCKET, webtoon.cover_image_path)
        if webtoon.cover_image_path else None,
        banner_image_url=storage.get_public_url(WEBTOON_IMAGES_BUCKET, webtoon.banner_image_path)
        if webtoon.banner_image_path else None,
        views=webtoon.views or 0,
        show_public_views=bool(webtoon.show_public_views),
        is_banner=bool(webtoon.is_banner),
        chapter_count=chapter_count,
        created_at=webtoon.created_at,
    )


async def _chapter_counts(session: AsyncSession, webtoon_ids: Sequence[str]) -> dict:
    if not webtoon_ids:
        return {}
    rows = await session.execute(
        select(Chapter.webtoon_id, func.count(Chapter.id))
        .where(Chapter.webtoon_id.in_(webtoon_ids))
        .group_by(Chapter.webtoon_id)
    )
    return {wid: count for wid, count in rows.all()}


async def list_webtoons(
    session: AsyncSession,
    storage: BlobStorage,
    search: str = "",
    tags: Sequence[str] = (),
    banners_only: bool = False,
) -> List[WebtoonOut]:
    stmt = select(Webtoon).order_by(Webtoon.created_at.desc())
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Webtoon.title.ilike(pattern), Webtoon.description.ilike(pattern)))
    if banners_only:
        stmt = stmt.where(Webtoon.is_banner.is_(True))

    webtoons = (await session.execute(stmt)).scalars().all()
    # Tag containment is filtered here so the JSON column stays portable
    wanted = set(tags or ())
    if wanted:
        webtoons = [w for w in webtoons if wanted <= set(w.tags or [])]

    counts = await _chapter_counts(session, [w.id for w in webtoons])
    return [to_out(w, storage, counts.get(w.id, 0)) for w in webtoons]


async def get_webtoon(session: AsyncSession, *, webtoon_id: str = None, slug: str = None) -> Webtoon:
    stmt = select(Webtoon)
    stmt = stmt.where(Webtoon.id == webtoon_id) if webtoon_id else stmt.where(Webtoon.slug == slug)
    webtoon = await session.scalar(stmt)
    if webtoon is None:
        raise NotFoundError("Webtoon", webtoon_id or slug)
    return webtoon


async def get_all_tags(session: AsyncSession) -> List[str]:
    rows = (await session.execute(select(Webtoon.tags))).scalars().all()
    return sorted({tag for tags in rows for tag in (tags or [])})


async def _unique_slug(session: AsyncSession, title: str, exclude_id: Optional[str] = None) -> str:
    base = slugify(title) or "webtoon"
    slug, n = base, 2
    while True:
        stmt = select(Webtoon.id).where(Webtoon.slug == slug)
        if exclude_id:
            stmt = stmt.where(Webtoon.id != exclude_id)
        if await session.scalar(stmt) is None:
            return slug
        slug = f"{base}-{n}"
        n += 1


async def _upload_image(storage: BlobStorage, webtoon_id: str, kind: str, image: UploadedFile) -> str:
    path = webtoon_image_path(webtoon_id, kind, image.filename)
    await storage.upload(WEBTOON_IMAGES_BUCKET, path, image.data, image.content_type)
    return path


async def create_webtoon(
    session: AsyncSession,
    storage: BlobStorage,
    data: WebtoonCreate,
    cover: Optional[UploadedFile] = None,
    banner: Optional[UploadedFile] = None,
) -> Webtoon:
    """
    Upload cover/banner, then insert the row. A failed insert removes the
    images uploaded here. A failed banner upload is not fatal, a failed
    cover upload is.
    """
    webtoon_id = str(uuid.uuid4())
    uploaded = []

    cover_path = None
    if cover is not None:
        try:
            cover_path = await _upload_image(storage, webtoon_id, "cover", cover)
        except Exception as e:
            raise UploadFailure("cover image", e) from e
        uploaded.append(cover_path)

    banner_path = None
    if banner is not None:
        try:
            banner_path = await _upload_image(storage, webtoon_id, "banner", banner)
            uploaded.append(banner_path)
        except Exception as e:
            logger.error("Banner image upload failed: %s", e)

    webtoon = Webtoon(
        id=webtoon_id,
        title=data.title,
        slug=await _unique_slug(session, data.title),
        description=data.description,
        tags=list(data.tags),
        cover_image_path=cover_path,
        banner_image_path=banner_path,
        is_banner=data.is_banner,
        show_public_views=data.show_public_views,
        views=0,
    )
    try:
        session.add(webtoon)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, uploaded)
        raise PersistFailure(f"Error adding webtoon to DB: {e}") from e

    await session.refresh(webtoon)
    return webtoon


async def update_webtoon(
    session: AsyncSession,
    storage: BlobStorage,
    webtoon_id: str,
    data: WebtoonUpdate,
    cover: Optional[UploadedFile] = None,
    banner: Optional[UploadedFile] = None,
) -> Webtoon:
    webtoon = await get_webtoon(session, webtoon_id=webtoon_id)
    old_cover, old_banner = webtoon.cover_image_path, webtoon.banner_image_path
    cover_path, banner_path = old_cover, old_banner
    uploaded = []

    if cover is not None:
        try:
            cover_path = await _upload_image(storage, webtoon_id, "cover", cover)
        except Exception as e:
            raise UploadFailure("cover image", e) from e
        if cover_path != old_cover:
            uploaded.append(cover_path)
    elif data.remove_cover:
        cover_path = None

    if banner is not None:
        try:
            banner_path = await _upload_image(storage, webtoon_id, "banner", banner)
            if banner_path != old_banner:
                uploaded.append(banner_path)
        except Exception as e:
            logger.error("Banner update upload failed: %s", e)
    elif data.remove_banner:
        banner_path = None

    changes = data.model_dump(exclude_unset=True, exclude={"remove_cover", "remove_banner"})
    for field, value in changes.items():
        if value is not None:
            setattr(webtoon, field, value)
    if data.title:
        webtoon.slug = await _unique_slug(session, data.title, exclude_id=webtoon_id)
    webtoon.cover_image_path = cover_path
    webtoon.banner_image_path = banner_path

    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, uploaded)
        raise PersistFailure(f"Error updating webtoon in DB: {e}") from e

    stale = [p for p, new in ((old_cover, cover_path), (old_banner, banner_path)) if p and p != new]
    await delete_quietly(storage, WEBTOON_IMAGES_BUCKET, stale)

    await session.refresh(webtoon)
    return webtoon


async def delete_webtoon(session: AsyncSession, storage: BlobStorage, webtoon_id: str) -> None:
    """Remove stored assets of every chapter, the webtoon folder, then the row (chapters cascade)."""
    webtoon = await get_webtoon(session, webtoon_id=webtoon_id)
    chapter_ids = (
        await session.execute(select(Chapter.id).where(Chapter.webtoon_id == webtoon_id))
    ).scalars().all()

    folders = []
    for cid in chapter_ids:
        folders += [chapter_pages_folder(webtoon_id, cid), chapter_folder(webtoon_id, cid)]
    folders.append(webtoon_folder(webtoon_id))
    for folder in folders:
        try:
            await storage.remove_folder(WEBTOON_IMAGES_BUCKET, folder)
        except Exception as e:
            logger.error("Error deleting webtoon folder contents (%s): %s", folder, e)

    await session.delete(webtoon)
    await session.commit()


async def is_favorite(session: AsyncSession, user_id: Optional[int], webtoon_id: str) -> bool:
    if not user_id:
        return False
    found = await session.scalar(
        select(UserFavorite.id).where(UserFavorite.user_id == user_id, UserFavorite.webtoon_id == webtoon_id)
    )
    return found is not None


async def add_favorite(session: AsyncSession, user_id: int, webtoon_id: str) -> None:
    await get_webtoon(session, webtoon_id=webtoon_id)
    # Idempotent add
    if await is_favorite(session, user_id, webtoon_id):
        return
    session.add(UserFavorite(user_id=user_id, webtoon_id=webtoon_id))
    await session.commit()


async def remove_favorite(session: AsyncSession, user_id: int, webtoon_id: str) -> None:
    favorite = await session.scalar(
        select(UserFavorite).where(UserFavorite.user_id == user_id, UserFavorite.webtoon_id == webtoon_id)
    )
    if favorite is None:
        raise NotFoundError("Favorite", webtoon_id)
    await session.delete(favorite)
    await session.commit()


async def toggle_favorite(session: AsyncSession, user_id: int, webtoon_id: str) -> bool:
    """
    Flip the favorite and return the state that was actually stored.
    Clients that already flipped their UI compare against this and revert
    on mismatch or error.
    """
    if await is_favorite(session, user_id, webtoon_id):
        await remove_favorite(session, user_id, webtoon_id)
        return False
    try:
        await add_favorite(session, user_id, webtoon_id)
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistFailure(f"Could not update favorite: {e}") from e
    return True


async def list_favorites(session: AsyncSession, storage: BlobStorage, user_id: int) -> List[WebtoonOut]:
    webtoons = (
        await session.execute(
            select(Webtoon)
            .join(UserFavorite, UserFavorite.webtoon_id == Webtoon.id)
            .where(UserFavorite.user_id == user_id)
            .order_by(UserFavorite.created_at.desc(), UserFavorite.id.desc())
        )
    ).scalars().all()
    counts = await _chapter_counts(session, [w.id for w in webtoons])
    return [to_out(w, storage, counts.get(w.id, 0)) for w in webtoons]
