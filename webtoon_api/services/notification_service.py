import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import UNREAD_NOTIFICATIONS_LIMIT
from webtoon_api.exceptions import NotFoundError
from webtoon_api.models.notification_model import Notification
from webtoon_api.models.user_model import UserFavorite

logger = logging.getLogger(__name__)


@dataclass
class NewChapterEvent:
    chapter_id: int
    webtoon_id: str
    chapter_number: float
    webtoon_title: str


def format_chapter_number(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


class FavoriteNotifier:
    """
    "New chapter" fan-out to every user who favorited the webtoon.

    Called after a chapter is published; callers treat failures as soft.
    """

    async def __call__(self, session: AsyncSession, event: NewChapterEvent) -> int:
        user_ids = (
            await session.execute(
                select(UserFavorite.user_id).where(UserFavorite.webtoon_id == event.webtoon_id)
            )
        ).scalars().all()
        if not user_ids:
            return 0

        message = (
            f"New chapter {format_chapter_number(event.chapter_number)} "
            f"of {event.webtoon_title} is out!"
        )
        session.add_all(
            Notification(
                user_id=uid,
                webtoon_id=event.webtoon_id,
                chapter_id=event.chapter_id,
                message=message,
            )
            for uid in user_ids
        )
        await session.commit()
        logger.info(
            "Notified %d user(s) about chapter %s of %s",
            len(user_ids), event.chapter_number, event.webtoon_id,
        )
        return len(user_ids)


async def get_unread_notifications(
    session: AsyncSession, user_id: Optional[int], limit: int = UNREAD_NOTIFICATIONS_LIMIT
) -> List[Notification]:
    if not user_id:
        return []
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_unread_count(session: AsyncSession, user_id: Optional[int]) -> int:
    if not user_id:
        return 0
    count = await session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
    )
    return int(count or 0)


async def mark_notification_as_read(session: AsyncSession, user_id: int, notification_id: int) -> None:
    result = await session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
    )
    if result.rowcount == 0:
        raise NotFoundError("Notification", notification_id)
    await session.commit()


async def mark_all_notifications_as_read(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await session.commit()
    return result.rowcount or 0
