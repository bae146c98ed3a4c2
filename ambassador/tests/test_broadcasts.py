"""
Tests for broadcasts: audience resolution, fan-out and linked tasks.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import ROLE_MANAGER, USER_PENDING, USER_SUSPENDED, AUDIT_BROADCAST_SENT
from ambassador.app.core.exceptions import ValidationError
from ambassador.app.models.audit import AuditLog
from ambassador.app.models.broadcast import Broadcast
from ambassador.app.models.user import User, Tag, UserTag
from ambassador.app.services.broadcasts import BroadcastService, LinkedTask, broadcast_text, fan_out
from ambassador.tests.conftest import FakeNotifier, create_user, create_task, bearer_headers


async def make_tag(session: AsyncSession, name: str, *users: User) -> Tag:
    tag = Tag(name=name)
    session.add(tag)
    await session.flush()
    session.add_all([UserTag(user_id=u.id, tag_id=tag.id) for u in users])
    await session.commit()
    return tag


def test_broadcast_text():
    assert broadcast_text("Новости", "Привет!") == "📢 Новости\n\nПривет!"
    assert broadcast_text(None, "Привет!") == "📢 Привет!"


@pytest.mark.asyncio
async def test_recipients_are_active_users_of_any_role(test_session: AsyncSession, ambassador: User, manager: User):
    await create_user(test_session, telegram_id=600001, status=USER_PENDING)
    await create_user(test_session, telegram_id=600002, status=USER_SUSPENDED)

    recipients = await BroadcastService(test_session).resolve_recipients()

    assert [u.id for u in recipients] == [ambassador.id, manager.id]


@pytest.mark.asyncio
async def test_tag_filter_matches_any_tag(test_session: AsyncSession, ambassador: User):
    beauty = await create_user(test_session, telegram_id=600003)
    sport = await create_user(test_session, telegram_id=600004)
    both = await create_user(test_session, telegram_id=600005)
    blocked = await create_user(test_session, telegram_id=600006, status=USER_SUSPENDED)
    beauty_tag = await make_tag(test_session, "beauty", beauty, both, blocked)
    sport_tag = await make_tag(test_session, "sport", sport, both)

    recipients = await BroadcastService(test_session).resolve_recipients([beauty_tag.id, sport_tag.id])

    assert [u.id for u in recipients] == [beauty.id, sport.id, both.id]


@pytest.mark.asyncio
async def test_create_broadcast_validation(test_session: AsyncSession, manager: User):
    service = BroadcastService(test_session)
    with pytest.raises(ValidationError):
        await service.create_broadcast(manager.id, "   ")
    with pytest.raises(ValidationError) as exc_info:
        await service.create_broadcast(manager.id, "Привет", tag_ids=[404])
    assert "tag_ids" in exc_info.value.errors
    with pytest.raises(ValidationError) as exc_info:
        await service.create_broadcast(manager.id, "Привет", task_ids=[404])
    assert "task_ids" in exc_info.value.errors


@pytest.mark.asyncio
async def test_fan_out_skips_failing_recipient():
    notifier = FakeNotifier()
    notifier.fail_for.add(2)
    task = LinkedTask(id=7, title="Обзор крема", description="Снимите короткое видео")

    delivered = await fan_out(notifier, 1, [1, 2, None, 3], "Анонс", "Новое задание", [task], "https://app.test/")

    assert delivered == 2
    assert [m["chat_id"] for m in notifier.sent] == [1, 1, 3, 3]
    main, linked = notifier.sent[0], notifier.sent[1]
    assert main["text"] == "📢 Анонс\n\nНовое задание"
    assert main["button_url"] is None
    assert "Обзор крема" in linked["text"]
    assert linked["button_url"] == "https://app.test/tasks/7"


@pytest.mark.asyncio
async def test_broadcast_endpoint(
    client: AsyncClient,
    test_session: AsyncSession,
    ambassador: User,
    manager: User,
    notifier,
    fresh_session: AsyncSession,
):
    other = await create_user(test_session, telegram_id=600007)
    await create_user(test_session, telegram_id=600008, status=USER_PENDING)
    tag = await make_tag(test_session, "vip", ambassador, other)
    task = await create_task(test_session, title="Весенняя коллекция")

    response = await client.post(
        "/api/admin/broadcasts",
        headers=bearer_headers(manager),
        json={"title": "VIP", "message": "Для вас новое задание", "tagIds": [tag.id], "taskIds": [task.id]},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["recipients_count"] == 2
    assert data["tag_ids"] == [tag.id]
    assert data["task_ids"] == [task.id]

    # Background fan-out has run by the time the client gets the response
    assert sorted({m["chat_id"] for m in notifier.sent}) == [ambassador.telegram_id, other.telegram_id]
    assert len(notifier.to(ambassador.telegram_id)) == 2

    stored = await fresh_session.get(Broadcast, data["id"])
    assert stored.recipients_count == 2
    audit = await fresh_session.scalar(select(AuditLog).where(AuditLog.action == AUDIT_BROADCAST_SENT))
    assert audit.details["recipients_count"] == 2

    listing = await client.get("/api/admin/broadcasts", headers=bearer_headers(manager))
    assert [b["id"] for b in listing.json()["items"]] == [data["id"]]


@pytest.mark.asyncio
async def test_broadcast_to_everyone(
    client: AsyncClient, test_session: AsyncSession, ambassador: User, manager: User, notifier
):
    second_manager = await create_user(test_session, telegram_id=600009, role=ROLE_MANAGER)

    response = await client.post(
        "/api/admin/broadcasts", headers=bearer_headers(manager), json={"message": "Всем привет"}
    )

    assert response.status_code == 201
    assert response.json()["tag_ids"] is None
    assert response.json()["recipients_count"] == 3
    assert {m["chat_id"] for m in notifier.sent} == {
        ambassador.telegram_id, manager.telegram_id, second_manager.telegram_id
    }


@pytest.mark.asyncio
async def test_broadcast_endpoint_errors(client: AsyncClient, manager: User, ambassador: User, notifier):
    empty = await client.post("/api/admin/broadcasts", headers=bearer_headers(manager), json={"message": ""})
    unknown_tag = await client.post(
        "/api/admin/broadcasts", headers=bearer_headers(manager), json={"message": "x", "tagIds": [123]}
    )

    assert empty.status_code == 400
    assert unknown_tag.status_code == 400
    assert notifier.sent == []
