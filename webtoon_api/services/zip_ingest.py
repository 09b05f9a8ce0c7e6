"""Turn an uploaded .zip of "Chapitre XX" folders into chapter uploads."""
import io
import logging
import mimetypes
import re
import zipfile
from typing import Dict, List, Optional, Sequence

from webtoon_api.services.ingestion_service import ChapterUpload, UploadedFile

logger = logging.getLogger(__name__)

IMAGE_RE = re.compile(r"\.(jpg|jpeg|png|webp)$", re.IGNORECASE)
CHAPTER_NUMBER_RE = re.compile(r"(\d+(\.\d+)?)")
_DIGITS_RE = re.compile(r"(\d+)")


def extract_chapter_number(folder_path: str) -> Optional[str]:
    """First run of digits (with an optional decimal part) in the folder's own name."""
    base = folder_path.rstrip("/").rsplit("/", 1)[-1]
    match = CHAPTER_NUMBER_RE.search(base)
    return match.group(1) if match else None


def natural_key(name: str):
    """Sort key where "page2" < "page10", ignoring case."""
    return [int(tok) if tok.isdigit() else tok.casefold() for tok in _DIGITS_RE.split(name)]


def _is_junk(path: str) -> bool:
    parts = path.split("/")
    return parts[0] == "__MACOSX" or parts[-1].startswith("._")


def extract_chapters_from_zip(data: bytes, required_roles: Sequence[str] = ()) -> List[ChapterUpload]:
    """
    Bucket the archive's images into chapters.

    A folder whose name contains a number is a chapter; an image belongs to
    the chapter whose folder is exactly the image's directory. Pages are
    ordered by natural filename order, chapters without pages are dropped
    and the rest come back sorted by chapter number.
    """
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        entries = [info for info in archive.infolist() if not _is_junk(info.filename)]
        images = [info for info in entries if not info.is_dir() and IMAGE_RE.search(info.filename)]

        # Only folders that directly hold images compete for a number, so a
        # numbered parent such as "Series 2/" never claims chapter 2
        folders = {info.filename.rsplit("/", 1)[0] for info in images if "/" in info.filename}

        folder_numbers: Dict[str, str] = {}
        claimed = set()
        for folder in sorted(folders, key=natural_key):
            number = extract_chapter_number(folder)
            if number is None:
                continue
            if float(number) in claimed:
                logger.info("Skipping folder %s, chapter %s already claimed", folder, number)
                continue
            claimed.add(float(number))
            folder_numbers[folder] = number

        pages: Dict[str, List[UploadedFile]] = {folder: [] for folder in folder_numbers}
        for info in images:
            parts = info.filename.split("/")
            if len(parts) < 2:
                continue
            directory = "/".join(parts[:-1])
            if directory not in folder_numbers:
                logger.info("Skipping page %s, no matching chapter folder", info.filename)
                continue
            name = parts[-1]
            pages[directory].append(
                UploadedFile(
                    filename=name,
                    data=archive.read(info),
                    content_type=mimetypes.guess_type(name)[0],
                )
            )

    chapters = []
    for folder, number in folder_numbers.items():
        files = pages[folder]
        if not files:
            logger.info("Chapter %s has no pages, dropping it", number)
            continue
        files.sort(key=lambda f: natural_key(f.filename))
        chapters.append(
            ChapterUpload(number=float(number), pages=files, required_roles=list(required_roles))
        )

    chapters.sort(key=lambda c: c.number)
    return chapters
