import io
import mimetypes
from typing import Optional, Tuple

from fastapi import HTTPException, UploadFile
from PIL import Image

from webtoon_api.config import ALLOWED_IMAGE_MIMES, PAGE_IMAGE_MAX_BYTES
from webtoon_api.services.ingestion_service import UploadedFile


def sniff_image_dims(data: bytes) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            im.load()
            return int(im.width), int(im.height)
    except Exception:
        return None


async def read_image_upload(file: UploadFile, *, max_bytes: int = PAGE_IMAGE_MAX_BYTES) -> UploadedFile:
    """Read an uploaded image into memory, rejecting non-images and oversized files with a 400."""
    name = file.filename or "upload"
    mime = file.content_type
    if mime not in ALLOWED_IMAGE_MIMES:
        mime = mimetypes.guess_type(name)[0]
    if mime not in ALLOWED_IMAGE_MIMES:
        raise HTTPException(status_code=400, detail=f"Unsupported image type: {name}")

    blob = await file.read()
    if not blob:
        raise HTTPException(status_code=400, detail=f"Empty file: {name}")
    if len(blob) > max_bytes:
        raise HTTPException(status_code=400, detail=f"Image too large: {name}")
    if sniff_image_dims(blob) is None:
        raise HTTPException(status_code=400, detail=f"Not a readable image: {name}")

    return UploadedFile(filename=name, data=blob, content_type=mime)
