from typing import Iterable, List, Optional, Tuple

from webtoon_api.config import ADMIN_ROLE


def can_access(user_id, user_role_name: Optional[str], required_roles: Optional[Iterable[str]]) -> bool:
    """
    Whether a requester may open a chapter.

    Admins see everything, chapters without required roles are public (even
    to anonymous visitors), anything else needs a logged-in user whose role
    is one of the required ones. Every call site (single fetch, list scans,
    previous/next scans) goes through here.
    """
    if user_role_name == ADMIN_ROLE:
        return True

    required = set(required_roles or ())
    if not required:
        return True

    if user_id is None:
        return False

    return user_role_name in required


def can_access_chapter(chapter, user_id, user_role_name: Optional[str]) -> bool:
    return can_access(user_id, user_role_name, getattr(chapter, "required_roles", None))


def annotate_access(chapters: Iterable, user_id, user_role_name: Optional[str]) -> List[Tuple[object, bool]]:
    """Pair every chapter with whether this requester may open it."""
    return [(chapter, can_access_chapter(chapter, user_id, user_role_name)) for chapter in chapters]
