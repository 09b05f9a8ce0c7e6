import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from conftest import page_file
from webtoon_api.config import WEBTOON_IMAGES_BUCKET
from webtoon_api.exceptions import NotFoundError
from webtoon_api.models.chapter_model import Chapter, Page
from webtoon_api.models.notification_model import Notification
from webtoon_api.models.user_model import UserFavorite
from webtoon_api.s3 import chapter_folder, chapter_pages_folder
from webtoon_api.services.ingestion_service import (
    ChapterUpload,
    ItemStatus,
    UploadedFile,
    ingest_chapters,
)


def chapter(number, *payloads, thumbnail=None, roles=()):
    return ChapterUpload(
        number=number,
        pages=[page_file(p, f"{i}.png") for i, p in enumerate(payloads, start=1)],
        thumbnail=thumbnail,
        required_roles=list(roles),
    )


async def _pages(session, chapter_id):
    rows = await session.execute(
        select(Page.page_number, Page.image_path).where(Page.chapter_id == chapter_id).order_by(Page.page_number)
    )
    return rows.all()


async def test_new_chapters_get_rows_pages_and_assets(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    result = await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"a1", b"a2"), chapter(2, b"b1", roles=["premium"])],
    )

    assert result.all_succeeded
    assert result.failed_numbers == []
    first, second = result.results
    assert first.status == ItemStatus.SUCCESS and first.progress == 100

    pages = await _pages(session, first.chapter_id)
    assert [n for n, _ in pages] == [1, 2]
    assert [storage.objects[(WEBTOON_IMAGES_BUCKET, path)] for _, path in pages] == [b"a1", b"a2"]
    assert pages[0][1] == f"{chapter_pages_folder(webtoon.id, first.chapter_id)}/page_001.png"

    row = await session.get(Chapter, second.chapter_id)
    assert row.required_roles == ["premium"]
    assert row.number == 2


async def test_page_numbers_follow_input_order_not_completion_order(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    payloads = [b"p1", b"p2", b"p3", b"p4", b"p5"]
    # Earlier pages finish last
    storage.delays = {b"p1": 0.05, b"p2": 0.03, b"p3": 0.01}

    result = await ingest_chapters(session, storage, webtoon.id, [chapter(1, *payloads)], concurrency=3)

    pages = await _pages(session, result.results[0].chapter_id)
    assert [storage.objects[(WEBTOON_IMAGES_BUCKET, path)] for _, path in pages] == payloads
    assert [n for n, _ in pages] == [1, 2, 3, 4, 5]


async def test_page_uploads_respect_concurrency_limit(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.delays = {f"p{i}".encode(): 0.01 for i in range(8)}
    await ingest_chapters(
        session, storage, webtoon.id, [chapter(1, *[f"p{i}".encode() for i in range(8)])], concurrency=3
    )
    assert storage.max_in_flight == 3


async def test_reupload_replaces_all_pages(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    first = await ingest_chapters(session, storage, webtoon.id, [chapter(1, b"old1", b"old2", b"old3")])
    chapter_id = first.results[0].chapter_id

    row = await session.get(Chapter, chapter_id)
    row.views = 7
    await session.commit()

    second = await ingest_chapters(
        session, storage, webtoon.id, [chapter(1, b"new1", b"new2", roles=["premium"])]
    )
    assert second.results[0].chapter_id == chapter_id

    pages = await _pages(session, chapter_id)
    assert [storage.objects[(WEBTOON_IMAGES_BUCKET, path)] for _, path in pages] == [b"new1", b"new2"]
    assert storage.paths_under(chapter_pages_folder(webtoon.id, chapter_id)) == [path for _, path in pages]

    await session.refresh(row)
    assert row.views == 7
    assert row.required_roles == ["premium"]
    count = (await session.execute(select(Chapter.id).where(Chapter.webtoon_id == webtoon.id))).all()
    assert len(count) == 1


async def test_failing_chapter_does_not_stop_the_batch(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.failing = {b"bad"}

    result = await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"c1"), chapter(2, b"c2-1", b"bad"), chapter(3, b"c3")],
    )

    assert [r.success for r in result.results] == [True, False, True]
    assert result.failed_numbers == [2.0]
    assert not result.all_succeeded
    failed = result.results[1]
    assert failed.status == ItemStatus.ERROR
    assert "page 2" in failed.error

    assert len(await _pages(session, result.results[0].chapter_id)) == 1
    assert len(await _pages(session, result.results[2].chapter_id)) == 1


async def test_failed_chapter_leaves_no_orphaned_pages(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.failing = {b"bad"}
    storage.delays = {b"bad": 0.02}

    result = await ingest_chapters(
        session, storage, webtoon.id, [chapter(4, b"ok1", b"ok2", b"bad", b"late")], concurrency=3
    )
    chapter_id = result.results[0].chapter_id
    assert not result.results[0].success
    assert await _pages(session, chapter_id) == []
    # Pages that did reach storage were cleaned up, the window after the failure never started
    assert storage.paths_under(chapter_pages_folder(webtoon.id, chapter_id)) == []
    assert b"late" not in storage.objects.values()


async def test_several_failed_pages_are_reported_together(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.failing = {b"x1", b"x3"}
    result = await ingest_chapters(session, storage, webtoon.id, [chapter(1, b"x1", b"ok", b"x3")])
    assert "pages 1, 3" in result.results[0].error


async def test_progress_reports_are_monotonic(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.failing = {b"bad"}
    storage.delays = {b"s1": 0.03, b"s2": 0.01}
    per_chapter = {}
    overall = []

    def on_chapter(index, number, percent, status, message):
        per_chapter.setdefault(index, []).append((percent, status))

    await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"s1", b"s2", b"s3", b"s4"), chapter(2, b"bad"), chapter(3, b"s5")],
        on_chapter_progress=on_chapter,
        on_overall_progress=overall.append,
    )

    for reports in per_chapter.values():
        percents = [p for p, _ in reports]
        assert percents == sorted(percents)
    assert per_chapter[0][-1] == (100, ItemStatus.SUCCESS)
    assert per_chapter[1][-1][1] == ItemStatus.ERROR
    assert per_chapter[1][-1][0] < 100
    assert overall == sorted(overall)
    assert overall[-1] == pytest.approx(100)
    assert len(overall) == 3


async def test_thumbnail_replacement_removes_old_asset(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    first = await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"p", thumbnail=UploadedFile("cover.png", b"thumb-png", "image/png"))],
    )
    chapter_id = first.results[0].chapter_id
    old_thumb = f"{chapter_folder(webtoon.id, chapter_id)}/thumbnail.png"
    assert storage.objects[(WEBTOON_IMAGES_BUCKET, old_thumb)] == b"thumb-png"

    await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"p", thumbnail=UploadedFile("cover.jpg", b"thumb-jpg", "image/jpeg"))],
    )
    row = await session.get(Chapter, chapter_id)
    await session.refresh(row)
    assert row.thumbnail_path == f"{chapter_folder(webtoon.id, chapter_id)}/thumbnail.jpg"
    assert (WEBTOON_IMAGES_BUCKET, old_thumb) not in storage.objects


async def test_failed_thumbnail_fails_only_that_chapter(session, storage, make_webtoon):
    webtoon = await make_webtoon()
    storage.failing = {b"broken-thumb"}
    result = await ingest_chapters(
        session, storage, webtoon.id,
        [
            chapter(1, b"p1", thumbnail=UploadedFile("t.png", b"broken-thumb")),
            chapter(2, b"p2"),
        ],
    )
    assert [r.success for r in result.results] == [False, True]
    assert "thumbnail" in result.results[0].error


async def test_unknown_webtoon_aborts_before_any_upload(session, storage):
    with pytest.raises(NotFoundError):
        await ingest_chapters(session, storage, "missing-webtoon", [chapter(1, b"p")])
    assert storage.objects == {}


async def test_favoriting_users_are_notified(session, storage, make_webtoon, make_user):
    webtoon = await make_webtoon("Tower Of Mist")
    fan = await make_user("fan")
    session.add(UserFavorite(user_id=fan.id, webtoon_id=webtoon.id))
    await session.commit()

    result = await ingest_chapters(session, storage, webtoon.id, [chapter(3, b"p"), chapter(3.5, b"q")])

    rows = (
        await session.execute(select(Notification).where(Notification.user_id == fan.id).order_by(Notification.id))
    ).scalars().all()
    assert [n.message for n in rows] == [
        "New chapter 3 of Tower Of Mist is out!",
        "New chapter 3.5 of Tower Of Mist is out!",
    ]
    assert [n.chapter_id for n in rows] == [r.chapter_id for r in result.results]


async def test_notifier_failure_does_not_fail_the_chapter(session, storage, make_webtoon):
    webtoon = await make_webtoon()

    async def broken_notifier(session, event):
        raise RuntimeError("notification backend down")

    result = await ingest_chapters(session, storage, webtoon.id, [chapter(1, b"p")], notifier=broken_notifier)
    assert result.all_succeeded


async def test_failed_page_insert_fails_the_chapter_and_removes_its_pages(
    session, storage, make_webtoon, monkeypatch
):
    webtoon = await make_webtoon()
    real_commit = session.commit
    page_commits = 0

    async def commit():
        nonlocal page_commits
        if any(isinstance(obj, Page) for obj in session.new):
            page_commits += 1
            # Second chapter's page rows are rejected
            if page_commits == 2:
                raise SQLAlchemyError("page insert rejected")
        await real_commit()

    monkeypatch.setattr(session, "commit", commit)

    result = await ingest_chapters(
        session, storage, webtoon.id,
        [chapter(1, b"one"), chapter(2, b"two-1", b"two-2"), chapter(3, b"three")],
    )

    assert [r.success for r in result.results] == [True, False, True]
    failed = result.results[1]
    assert failed.status == ItemStatus.ERROR
    assert "Failed to insert page records" in failed.error
    assert await _pages(session, failed.chapter_id) == []
    assert storage.paths_under(chapter_pages_folder(webtoon.id, failed.chapter_id)) == []
    assert b"two-1" not in storage.objects.values()

    for ok in (result.results[0], result.results[2]):
        assert len(await _pages(session, ok.chapter_id)) == 1


async def test_concurrent_ingestions_of_one_chapter_do_not_mix_pages(session_factory, storage, make_webtoon):
    webtoon = await make_webtoon()
    first_payloads = [b"first-1", b"first-2", b"first-3"]
    second_payloads = [b"second-1", b"second-2"]
    storage.delays = {b"first-1": 0.03, b"first-2": 0.01, b"first-3": 0.02, b"second-1": 0.01, b"second-2": 0.02}

    async def no_notify(session, event):
        return 0

    async def run(payloads):
        async with session_factory() as own_session:
            return await ingest_chapters(
                own_session, storage, webtoon.id, [chapter(7, *payloads)], notifier=no_notify
            )

    results = await asyncio.gather(run(first_payloads), run(second_payloads))
    assert all(r.all_succeeded for r in results)
    assert results[0].results[0].chapter_id == results[1].results[0].chapter_id
    chapter_id = results[0].results[0].chapter_id

    async with session_factory() as check:
        pages = await _pages(check, chapter_id)
    stored = [storage.objects[(WEBTOON_IMAGES_BUCKET, path)] for _, path in pages]
    assert stored in (first_payloads, second_payloads)
    assert [n for n, _ in pages] == list(range(1, len(stored) + 1))
    assert len(storage.paths_under(chapter_pages_folder(webtoon.id, chapter_id))) == len(stored)
