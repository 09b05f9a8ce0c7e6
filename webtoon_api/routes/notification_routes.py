from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.database import get_async_session
from webtoon_api.models.user_model import Profile
from webtoon_api.schemas.user_schemas import NotificationCount, NotificationOut
from webtoon_api.services import notification_service
from webtoon_api.utils.token_utils import get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/unread", response_model=List[NotificationOut])
async def unread_notifications(
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    rows = await notification_service.get_unread_notifications(session, user.id)
    return [
        NotificationOut(
            id=n.id,
            message=n.message,
            created_at=n.created_at,
            webtoon_id=n.webtoon_id,
            chapter_id=n.chapter_id,
            webtoon_title=n.webtoon.title if n.webtoon else None,
            is_read=n.is_read,
        )
        for n in rows
    ]


@router.get("/count", response_model=NotificationCount)
async def unread_count(
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return NotificationCount(count=await notification_service.get_unread_count(session, user.id))


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: int,
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    await notification_service.mark_notification_as_read(session, user.id, notification_id)


@router.post("/read-all", response_model=NotificationCount)
async def mark_all_read(
    user: Profile = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    return NotificationCount(count=await notification_service.mark_all_notifications_as_read(session, user.id))
