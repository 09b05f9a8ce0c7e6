import asyncio
import json
import logging
from typing import List, Optional, Tuple, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import WEBTOON_IMAGES_BUCKET
from webtoon_api.database import get_async_session
from webtoon_api.deps.admin import get_requester, require_admin
from webtoon_api.s3 import BlobStorage, get_storage
from webtoon_api.schemas.chapter_schemas import (
    BatchIngestOut,
    ChapterIngestResultOut,
    ChapterManifestItem,
    ChapterSummaryOut,
    ChapterView,
    RandomChapterOut,
    RestrictedChapterView,
)
from webtoon_api.services import chapter_admin_service, chapter_service
from webtoon_api.services.ingestion_service import (
    BatchIngestResult,
    ChapterUpload,
    ItemStatus,
    ingest_chapters,
)
from webtoon_api.services.zip_ingest import extract_chapters_from_zip
from webtoon_api.utils.images import read_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chapters", tags=["chapters"])
admin_router = APIRouter(prefix="/admin", tags=["admin-chapters"], dependencies=[Depends(require_admin)])

_manifest_adapter = TypeAdapter(List[ChapterManifestItem])


def _split_roles(raw: Optional[str]) -> List[str]:
    return [r.strip() for r in (raw or "").split(",") if r.strip()]


def _log_chapter_progress(index: int, number: float, percent: int, status: ItemStatus, message: Optional[str]):
    if status == ItemStatus.ERROR:
        logger.warning("Chapter %s (#%d): %s%% %s %s", number, index, percent, status.value, message or "")
    else:
        logger.debug("Chapter %s (#%d): %s%% %s %s", number, index, percent, status.value, message or "")


def _log_overall_progress(percent: float):
    logger.info("Chapter batch %.0f%% done", percent)


def _to_out(result: BatchIngestResult) -> BatchIngestOut:
    return BatchIngestOut(
        results=[
            ChapterIngestResultOut(
                number=r.number, success=r.success, error=r.error, chapter_id=r.chapter_id
            )
            for r in result.results
        ],
        all_succeeded=result.all_succeeded,
        failed_numbers=result.failed_numbers,
    )


# ------------------------------
# Reader
# ------------------------------
@router.get("/latest", response_model=List[ChapterSummaryOut])
async def latest_chapters(
    limit: int = 4,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    user_id, role = requester
    return await chapter_service.list_latest_chapters(session, storage, user_id, role, limit=min(max(limit, 1), 50))


@router.get("/random", response_model=RandomChapterOut)
async def random_chapter(
    session: AsyncSession = Depends(get_async_session),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    user_id, role = requester
    picked = await chapter_service.random_accessible_chapter(session, user_id, role)
    if picked is None:
        raise HTTPException(status_code=404, detail="No accessible chapter")
    webtoon_id, chapter_id = picked
    return RandomChapterOut(
        webtoon_id=webtoon_id,
        chapter_id=chapter_id,
        link=f"/webtoon/{webtoon_id}/chapter/{chapter_id}",
    )


@router.get("/{chapter_id}", response_model=Union[ChapterView, RestrictedChapterView])
async def read_chapter(
    chapter_id: int,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
    requester: Tuple[Optional[int], Optional[str]] = Depends(get_requester),
):
    user_id, role = requester
    return await chapter_service.resolve_chapter(session, storage, chapter_id, user_id, role)


# ------------------------------
# Admin
# ------------------------------
@admin_router.post("/webtoons/{webtoon_id}/chapters/batch", response_model=BatchIngestOut)
async def upload_chapter_batch(
    webtoon_id: str,
    manifest: str = Form(...),
    files: List[UploadFile] = File(...),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    """
    manifest is a JSON list of {number, required_roles, thumbnail, pages};
    thumbnail and pages name the uploaded files, pages in reading order.
    """
    try:
        items = _manifest_adapter.validate_python(json.loads(manifest))
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid manifest: {e}")
    if not items:
        raise HTTPException(status_code=400, detail="Manifest is empty")

    by_name = {}
    for f in files:
        if f.filename in by_name:
            raise HTTPException(status_code=400, detail=f"Duplicate file name: {f.filename}")
        by_name[f.filename] = f

    uploads = []
    for item in items:
        missing = [n for n in item.pages + ([item.thumbnail] if item.thumbnail else []) if n not in by_name]
        if missing:
            raise HTTPException(status_code=400, detail=f"Files missing for chapter {item.number}: {missing}")
        uploads.append(ChapterUpload(
            number=item.number,
            pages=[await read_image_upload(by_name[n]) for n in item.pages],
            thumbnail=await read_image_upload(by_name[item.thumbnail]) if item.thumbnail else None,
            required_roles=item.required_roles,
        ))

    result = await ingest_chapters(
        session, storage, webtoon_id, uploads,
        on_overall_progress=_log_overall_progress,
        on_chapter_progress=_log_chapter_progress,
    )
    return _to_out(result)


@admin_router.post("/webtoons/{webtoon_id}/chapters/zip", response_model=BatchIngestOut)
async def upload_chapter_zip(
    webtoon_id: str,
    archive: UploadFile = File(...),
    required_roles: str = Form(""),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    if not (archive.filename or "").lower().endswith(".zip"):
        raise HTTPException(status_code=400, detail="Expected a .zip file")

    data = await archive.read()
    try:
        uploads = await asyncio.to_thread(extract_chapters_from_zip, data, _split_roles(required_roles))
    except Exception as e:
        logger.error("Error processing ZIP file %s: %s", archive.filename, e)
        raise HTTPException(status_code=400, detail=f"Could not read ZIP file: {e}")
    if not uploads:
        raise HTTPException(
            status_code=400,
            detail="No chapter folder (e.g. 'Chapitre 01') with images found in the ZIP",
        )

    result = await ingest_chapters(
        session, storage, webtoon_id, uploads,
        on_overall_progress=_log_overall_progress,
        on_chapter_progress=_log_chapter_progress,
    )
    return _to_out(result)


@admin_router.patch("/chapters/{chapter_id}", response_model=ChapterSummaryOut)
async def edit_chapter(
    chapter_id: int,
    number: Optional[float] = Form(None),
    required_roles: Optional[str] = Form(None),
    remove_thumbnail: bool = Form(False),
    thumbnail: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    chapter = await chapter_admin_service.update_chapter(
        session, storage, chapter_id,
        number=number,
        required_roles=_split_roles(required_roles) if required_roles is not None else None,
        thumbnail=await read_image_upload(thumbnail) if thumbnail is not None else None,
        remove_thumbnail=remove_thumbnail,
    )
    return ChapterSummaryOut(
        id=chapter.id,
        number=chapter.number,
        created_at=chapter.created_at,
        thumbnail_url=storage.get_public_url(WEBTOON_IMAGES_BUCKET, chapter.thumbnail_path)
        if chapter.thumbnail_path else None,
        views=chapter.views or 0,
        required_roles=list(chapter.required_roles or []),
        webtoon_id=chapter.webtoon_id,
    )


@admin_router.delete("/chapters/{chapter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_chapter(
    chapter_id: int,
    session: AsyncSession = Depends(get_async_session),
    storage: BlobStorage = Depends(get_storage),
):
    await chapter_admin_service.delete_chapter(session, storage, chapter_id)
