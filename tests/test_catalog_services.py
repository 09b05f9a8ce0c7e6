import pytest
from sqlalchemy import select

from conftest import page_file
from webtoon_api.config import WEBTOON_IMAGES_BUCKET
from webtoon_api.exceptions import ConflictError, NotFoundError, ReservedRoleError, RoleValidationError, UploadFailure
from webtoon_api.models.chapter_model import Chapter, Page
from webtoon_api.models.notification_model import Notification
from webtoon_api.models.webtoon_model import Webtoon
from webtoon_api.s3 import chapter_folder, webtoon_folder
from webtoon_api.schemas.webtoon_schemas import WebtoonCreate, WebtoonUpdate
from webtoon_api.services import chapter_admin_service, notification_service, role_service, webtoon_service
from webtoon_api.services.ingestion_service import ChapterUpload, UploadedFile, ingest_chapters
from webtoon_api.utils.slugify import slugify


def test_slugify_strips_accents_and_punctuation():
    assert slugify("  L'Épée du Héros! ") == "l-epee-du-heros"


# ------------------------------
# Webtoons
# ------------------------------
async def test_create_webtoon_uploads_images_and_dedupes_slug(session, storage):
    cover = UploadedFile("front.png", b"cover-bytes", "image/png")
    first = await webtoon_service.create_webtoon(
        session, storage, WebtoonCreate(title="Blue Lotus", tags=["action"]), cover=cover
    )
    second = await webtoon_service.create_webtoon(session, storage, WebtoonCreate(title="Blue Lotus"))

    assert first.slug == "blue-lotus"
    assert second.slug == "blue-lotus-2"
    assert first.cover_image_path == f"{webtoon_folder(first.id)}/cover.png"
    assert storage.objects[(WEBTOON_IMAGES_BUCKET, first.cover_image_path)] == b"cover-bytes"


async def test_cover_upload_failure_is_fatal_banner_failure_is_not(session, storage):
    storage.failing = {b"bad"}
    with pytest.raises(UploadFailure):
        await webtoon_service.create_webtoon(
            session, storage, WebtoonCreate(title="No Cover"), cover=UploadedFile("c.png", b"bad")
        )

    created = await webtoon_service.create_webtoon(
        session, storage, WebtoonCreate(title="No Banner"), banner=UploadedFile("b.png", b"bad")
    )
    assert created.banner_image_path is None


async def test_update_webtoon_replaces_and_removes_images(session, storage):
    webtoon = await webtoon_service.create_webtoon(
        session, storage, WebtoonCreate(title="Swap"),
        cover=UploadedFile("c.png", b"old-cover"), banner=UploadedFile("b.png", b"banner"),
    )
    old_cover = webtoon.cover_image_path

    updated = await webtoon_service.update_webtoon(
        session, storage, webtoon.id,
        WebtoonUpdate(title="Swapped", remove_banner=True),
        cover=UploadedFile("c.jpg", b"new-cover"),
    )
    assert updated.slug == "swapped"
    assert updated.banner_image_path is None
    assert updated.cover_image_path.endswith("cover.jpg")
    assert (WEBTOON_IMAGES_BUCKET, old_cover) not in storage.objects
    assert storage.paths_under(webtoon_folder(webtoon.id)) == [updated.cover_image_path]


async def test_list_webtoons_filters(session, storage, make_webtoon):
    await make_webtoon("Sword Rain", tags=["action", "fantasy"], is_banner=True)
    await make_webtoon("Quiet Cafe", tags=["slice-of-life"])

    assert [w.title for w in await webtoon_service.list_webtoons(session, storage, search="cafe")] == ["Quiet Cafe"]
    assert [w.title for w in await webtoon_service.list_webtoons(session, storage, tags=["action"])] == ["Sword Rain"]
    assert [w.title for w in await webtoon_service.list_webtoons(session, storage, banners_only=True)] == ["Sword Rain"]
    assert await webtoon_service.get_all_tags(session) == ["action", "fantasy", "slice-of-life"]


async def test_delete_webtoon_removes_rows_and_assets(session, storage, make_webtoon):
    webtoon = await make_webtoon("Gone Soon")
    result = await ingest_chapters(
        session, storage, webtoon.id,
        [ChapterUpload(1, [page_file(b"p1")], thumbnail=UploadedFile("t.png", b"t"))],
    )
    assert result.all_succeeded

    await webtoon_service.delete_webtoon(session, storage, webtoon.id)

    assert storage.paths_under(webtoon_folder(webtoon.id)) == []
    assert await session.scalar(select(Webtoon.id).where(Webtoon.id == webtoon.id)) is None
    assert await session.scalar(select(Chapter.id).where(Chapter.webtoon_id == webtoon.id)) is None


async def test_favorites_are_idempotent(session, storage, make_webtoon, make_user):
    webtoon = await make_webtoon("Loved")
    user = await make_user("lover")

    await webtoon_service.add_favorite(session, user.id, webtoon.id)
    await webtoon_service.add_favorite(session, user.id, webtoon.id)
    assert await webtoon_service.is_favorite(session, user.id, webtoon.id)
    assert [w.id for w in await webtoon_service.list_favorites(session, storage, user.id)] == [webtoon.id]

    await webtoon_service.remove_favorite(session, user.id, webtoon.id)
    assert not await webtoon_service.is_favorite(session, user.id, webtoon.id)
    with pytest.raises(NotFoundError):
        await webtoon_service.remove_favorite(session, user.id, webtoon.id)


async def test_toggle_favorite_returns_stored_state(session, make_webtoon, make_user):
    webtoon = await make_webtoon("Flip")
    user = await make_user("flipper")

    assert await webtoon_service.toggle_favorite(session, user.id, webtoon.id) is True
    assert await webtoon_service.is_favorite(session, user.id, webtoon.id)
    assert await webtoon_service.toggle_favorite(session, user.id, webtoon.id) is False
    assert not await webtoon_service.is_favorite(session, user.id, webtoon.id)

    with pytest.raises(NotFoundError):
        await webtoon_service.toggle_favorite(session, user.id, "missing")


# ------------------------------
# Chapter admin
# ------------------------------
async def test_update_chapter_metadata_and_thumbnail(session, storage, make_webtoon, make_chapter):
    webtoon = await make_webtoon()
    chapter = await make_chapter(webtoon, 1)

    updated = await chapter_admin_service.update_chapter(
        session, storage, chapter.id,
        number=1.5, required_roles=["premium"], thumbnail=UploadedFile("t.png", b"thumb"),
    )
    assert updated.number == 1.5
    assert updated.required_roles == ["premium"]
    assert storage.objects[(WEBTOON_IMAGES_BUCKET, updated.thumbnail_path)] == b"thumb"

    cleared = await chapter_admin_service.update_chapter(session, storage, chapter.id, remove_thumbnail=True)
    assert cleared.thumbnail_path is None
    assert storage.paths_under(chapter_folder(webtoon.id, chapter.id)) == []


async def test_update_chapter_to_taken_number_fails_and_cleans_up(session, storage, make_webtoon, make_chapter):
    webtoon = await make_webtoon()
    await make_chapter(webtoon, 1)
    second = await make_chapter(webtoon, 2)
    # The failed commit rolls back and expires loaded rows
    webtoon_id, second_id = webtoon.id, second.id

    with pytest.raises(ConflictError):
        await chapter_admin_service.update_chapter(
            session, storage, second_id, number=1, thumbnail=UploadedFile("t.png", b"thumb")
        )
    assert storage.paths_under(chapter_folder(webtoon_id, second_id)) == []

    await session.refresh(second)
    assert second.number == 2.0


async def test_delete_chapter_removes_pages_and_assets(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    result = await ingest_chapters(
        session, storage, webtoon.id,
        [ChapterUpload(1, [page_file(b"p1"), page_file(b"p2")], thumbnail=UploadedFile("t.png", b"t"))],
    )
    chapter_id = result.results[0].chapter_id

    await chapter_admin_service.delete_chapter(session, storage, chapter_id)

    assert storage.paths_under(chapter_folder(webtoon.id, chapter_id)) == []
    assert await session.scalar(select(Page.id).where(Page.chapter_id == chapter_id)) is None
    with pytest.raises(NotFoundError):
        await chapter_admin_service.delete_chapter(session, storage, chapter_id)


# ------------------------------
# Roles
# ------------------------------
async def test_role_crud(session):
    role = await role_service.create_role(session, "  premium ", "Paying readers")
    assert role.name == "premium"
    role_id = role.id

    with pytest.raises(RoleValidationError):
        await role_service.create_role(session, "premium")

    renamed = await role_service.update_role(session, role_id, "vip", None)
    assert renamed.name == "vip"
    assert renamed.description is None

    await role_service.delete_role(session, role_id)
    assert await role_service.list_roles(session) == []


@pytest.mark.parametrize("name", ["admin", "User", "", "   "])
async def test_reserved_and_empty_role_names_are_rejected(session, name):
    with pytest.raises(RoleValidationError):
        await role_service.create_role(session, name)


async def test_reserved_error_is_a_validation_error(session):
    with pytest.raises(ReservedRoleError):
        await role_service.create_role(session, "admin")


async def test_set_user_role(session, make_user):
    user = await make_user("promoted")
    await role_service.create_role(session, "premium")

    assert (await role_service.set_user_role(session, user.id, "premium")).role == "premium"
    assert (await role_service.set_user_role(session, user.id, "admin")).role == "admin"
    with pytest.raises(RoleValidationError):
        await role_service.set_user_role(session, user.id, "ghost")
    with pytest.raises(NotFoundError):
        await role_service.set_user_role(session, 9999, "user")


# ------------------------------
# Notifications
# ------------------------------
async def test_notification_read_state(session, make_webtoon, make_user):
    webtoon = await make_webtoon()
    user = await make_user("reader")
    other = await make_user("other")
    session.add_all([
        Notification(user_id=user.id, webtoon_id=webtoon.id, message="one"),
        Notification(user_id=user.id, webtoon_id=webtoon.id, message="two"),
        Notification(user_id=other.id, webtoon_id=webtoon.id, message="not yours"),
    ])
    await session.commit()

    unread = await notification_service.get_unread_notifications(session, user.id)
    assert sorted(n.message for n in unread) == ["one", "two"]
    assert await notification_service.get_unread_count(session, user.id) == 2

    await notification_service.mark_notification_as_read(session, user.id, unread[0].id)
    assert await notification_service.get_unread_count(session, user.id) == 1

    foreign = await session.scalar(select(Notification.id).where(Notification.user_id == other.id))
    with pytest.raises(NotFoundError):
        await notification_service.mark_notification_as_read(session, user.id, foreign)

    assert await notification_service.mark_all_notifications_as_read(session, user.id) == 1
    assert await notification_service.get_unread_count(session, user.id) == 0
    assert await notification_service.get_unread_count(session, None) == 0
