# webtoon_api/deps/admin.py
from typing import Optional, Tuple

from fastapi import Depends, HTTPException, status

from webtoon_api.config import ADMIN_ROLE
from webtoon_api.models.user_model import Profile
from webtoon_api.utils.token_utils import get_current_user, get_current_user_optional


async def get_requester(
    user: Optional[Profile] = Depends(get_current_user_optional),
) -> Tuple[Optional[int], Optional[str]]:
    """(user id, role name) of the caller; (None, None) when anonymous."""
    if user is None:
        return None, None
    return user.id, user.role


async def require_admin(user: Profile = Depends(get_current_user)) -> Profile:
    """
    Requires the authenticated user to have the admin role.
    Raises 403 if not an admin.
    """
    if getattr(user, "role", None) != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
