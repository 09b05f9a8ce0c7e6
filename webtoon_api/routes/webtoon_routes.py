from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.database import get_async_session
from webtoon_api.deps.admin import get_requester, require_admin
from webtoon_api.models.user_model import Profile
from webtoon_api.s3 import BlobStorage, get_storage
from webtoon_api.schemas.chapter_schemas import ChapterSummaryOut
from webtoon_api.schemas.user_schemas import FavoriteState, ReadChaptersOut
from webtoon_api.schemas.webtoon_schemas import WebtoonCreate, WebtoonDetailOut, WebtoonOut, WebtoonUpdate
from webtoon_api.services import chapter_service, webtoon_service
from webtoon_api.utils.images import read_image_upload
from webtoon_api.utils.token_utils import get_current_user

router = APIRouter(prefix="/webtoons", tags=["webtoons"])


async def _detail(session, storage, webtoon, user_id, role) -> WebtoonDetailOut:
    chapters = await chapter_service.list_webtoon_chapters(session, storage, webtoon.id, user_id, role)
    base = webtoon_service.to_out(webtoon, storage, len(chapters))
    return WebtoonDetailOut(
        **base.model_dump(),
        chapters=chapters,
        read_chapter_ids=await chapter_service.get_read_chapter_ids(session, user_id, webtoon.id),
        is_favorite=await webtoon_service.is_favorite(session, user_id, webtoon.id),
    )


@router.get("/", response_model=List[WebtoonOut])
async def list_webtoons(
    q: str = "",
    tags: List[str] = Query(default=[]),
    banners: bool = False,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    return await webtoon_service.list_webtoons(session, storage, search=q, tags=tags, banners_only=banners)


@router.get("/tags", response_model=List[str])
async def list_tags(session: AsyncSession = Depends(get_async_session)):
    return await webtoon_service.get_all_tags(session)


@router.get("/favorites/me", response_model=List[WebtoonOut])
async def my_favorites(
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    return await webtoon_service.list_favorites(session, storage, user.id)


@router.get("/slug/{slug}", response_model=WebtoonDetailOut)
async def get_webtoon_by_slug(
    slug: str,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    webtoon = await webtoon_service.get_webtoon(session, slug=slug)
    return await _detail(session, storage, webtoon, *requester)


@router.get("/{webtoon_id}", response_model=WebtoonDetailOut)
async def get_webtoon(
    webtoon_id: str,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    webtoon = await webtoon_service.get_webtoon(session, webtoon_id=webtoon_id)
    return await _detail(session, storage, webtoon, *requester)


@router.get("/{webtoon_id}/chapters", response_model=List[ChapterSummaryOut])
async def list_chapters(
    webtoon_id: str,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    await webtoon_service.get_webtoon(session, webtoon_id=webtoon_id)
    return await chapter_service.list_webtoon_chapters(session, storage, webtoon_id, *requester)


@router.get("/{webtoon_id}/read-chapters", response_model=ReadChaptersOut)
async def read_chapters(
    webtoon_id: str,
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return ReadChaptersOut(chapter_ids=await chapter_service.get_read_chapter_ids(session, user.id, webtoon_id))


@router.post("/{webtoon_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
async def add_favorite(
    webtoon_id: str,
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await webtoon_service.add_favorite(session, user.id, webtoon_id)


@router.post("/{webtoon_id}/favorite/toggle", response_model=FavoriteState)
async def toggle_favorite(
    webtoon_id: str,
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return FavoriteState(is_favorite=await webtoon_service.toggle_favorite(session, user.id, webtoon_id))


@router.delete("/{webtoon_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
async def remove_favorite(
    webtoon_id: str,
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await webtoon_service.remove_favorite(session, user.id, webtoon_id)


# ------------------------------
# Admin
# ------------------------------
@router.post("/", response_model=WebtoonOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_admin)])
async def create_webtoon(
    webtoon: WebtoonCreate = Depends(WebtoonCreate.as_form),
    cover: Optional[UploadFile] = File(None),
    banner: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    created = await webtoon_service.create_webtoon(
        session, storage, webtoon,
        cover=await read_image_upload(cover) if cover is not None else None,
        banner=await read_image_upload(banner) if banner is not None else None,
    )
    return webtoon_service.to_out(created, storage)


@router.put("/{webtoon_id}", response_model=WebtoonOut, dependencies=[Depends(require_admin)])
async def update_webtoon(
    webtoon_id: str,
    webtoon: WebtoonUpdate = Depends(WebtoonUpdate.as_form),
    cover: Optional[UploadFile] = File(None),
    banner: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    updated = await webtoon_service.update_webtoon(
        session, storage, webtoon_id, webtoon,
        cover=await read_image_upload(cover) if cover is not None else None,
        banner=await read_image_upload(banner) if banner is not None else None,
    )
    return webtoon_service.to_out(updated, storage)


@router.delete("/{webtoon_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_admin)])
async def delete_webtoon(
    webtoon_id: str,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    await webtoon_service.delete_webtoon(session, storage, webtoon_id)
