"""
Tests for tasks: visibility rule, management and publication.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import (
    TASK_DRAFT,
    TASK_ACTIVE,
    TASK_COMPLETED,
    TASK_CANCELLED,
    TASK_PERSONAL,
    TASK_GENERAL,
    AUDIT_TASK_PUBLISHED,
    USER_PENDING,
)
from ambassador.app.core.exceptions import ValidationError
from ambassador.app.models.audit import AuditLog
from ambassador.app.models.task import Task
from ambassador.app.models.user import User
from ambassador.app.services.tasks import TaskService, TaskNotFoundError, InvalidTaskTransitionError
from ambassador.tests.conftest import create_user, create_task, create_report, tg_headers, bearer_headers


# ============================================
# VISIBILITY
# ============================================

@pytest.mark.asyncio
async def test_visibility_rule(test_session: AsyncSession, ambassador: User):
    other = await create_user(test_session, telegram_id=777001)
    general = await create_task(test_session, title="Для всех")
    mine = await create_task(test_session, title="Мое", task_type=TASK_PERSONAL, assignees=[ambassador.id])
    theirs = await create_task(test_session, title="Чужое", task_type=TASK_PERSONAL, assignees=[other.id])

    service = TaskService(test_session)
    visible = {t.id for t in await service.list_visible(ambassador.id)}

    assert visible == {general.id, mine.id}
    with pytest.raises(TaskNotFoundError):
        await service.get_visible(theirs.id, ambassador.id)


@pytest.mark.asyncio
async def test_my_tasks_endpoint(client: AsyncClient, test_session: AsyncSession, ambassador: User):
    other = await create_user(test_session, telegram_id=777002)
    general = await create_task(test_session, title="Общее")
    personal = await create_task(test_session, title="Личное", task_type=TASK_PERSONAL, assignees=[ambassador.id])
    hidden = await create_task(test_session, title="Скрытое", task_type=TASK_PERSONAL, assignees=[other.id])
    await create_task(test_session, title="Черновик", status=TASK_DRAFT)
    await create_report(test_session, ambassador, general)
    await create_report(test_session, other, general)

    response = await client.get("/api/tasks/me", headers=tg_headers(ambassador))

    assert response.status_code == 200
    by_id = {t["id"]: t for t in response.json()}
    assert set(by_id) == {general.id, personal.id}
    # Only the caller's own reports are counted
    assert by_id[general.id]["reports_count"] == 1
    assert by_id[personal.id]["reports_count"] == 0

    only_personal = await client.get(
        "/api/tasks/me", params={"type": TASK_PERSONAL}, headers=tg_headers(ambassador)
    )
    assert [t["id"] for t in only_personal.json()] == [personal.id]

    invisible = await client.get(f"/api/tasks/{hidden.id}", headers=tg_headers(ambassador))
    assert invisible.status_code == 404


@pytest.mark.asyncio
async def test_fetch_only_active_tasks(client: AsyncClient, test_session: AsyncSession, ambassador: User):
    active = await create_task(test_session)
    draft = await create_task(test_session, status=TASK_DRAFT)
    done = await create_task(test_session, status=TASK_COMPLETED)
    headers = tg_headers(ambassador)

    assert (await client.get(f"/api/tasks/{active.id}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/tasks/{draft.id}", headers=headers)).status_code == 404
    assert (await client.get(f"/api/tasks/{done.id}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_unknown_filter_is_rejected(client: AsyncClient, ambassador: User):
    response = await client.get("/api/tasks/me", params={"type": "SECRET"}, headers=tg_headers(ambassador))
    assert response.status_code == 400


# ============================================
# MANAGEMENT
# ============================================

@pytest.mark.asyncio
async def test_create_task_as_draft(client: AsyncClient, manager: User, ambassador: User, fresh_session: AsyncSession):
    response = await client.post(
        "/api/tasks",
        headers=bearer_headers(manager),
        json={
            "title": "Сторис с продуктом",
            "type": TASK_PERSONAL,
            "rewardFlariki": 150,
            "assignedUserIds": [ambassador.id, ambassador.id],
            "deadline": "2026-11-01T12:00:00+03:00",
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == TASK_DRAFT
    assert data["reward_flariki"] == 150
    assert data["assigned_user_ids"] == [ambassador.id]
    # Stored as naive UTC
    assert data["deadline"].startswith("2026-11-01T09:00:00")

    audit = (await fresh_session.execute(select(AuditLog))).scalars().all()
    assert [a.action for a in audit] == ["TASK_CREATED"]


@pytest.mark.asyncio
async def test_personal_task_requires_assignees(test_session: AsyncSession, manager: User):
    service = TaskService(test_session)
    with pytest.raises(ValidationError):
        await service.create_task(manager.id, "Без исполнителей", TASK_PERSONAL)
    with pytest.raises(ValidationError):
        await service.create_task(manager.id, "Общее с исполнителем", TASK_GENERAL, assigned_user_ids=[manager.id])
    with pytest.raises(ValidationError):
        await service.create_task(manager.id, "Неизвестный", TASK_PERSONAL, assigned_user_ids=[98765])


@pytest.mark.asyncio
async def test_update_replaces_assignments(client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User):
    other = await create_user(test_session, telegram_id=777003)
    task = await create_task(test_session, task_type=TASK_PERSONAL, status=TASK_DRAFT, assignees=[ambassador.id])

    response = await client.patch(
        f"/api/tasks/{task.id}",
        headers=bearer_headers(manager),
        json={"assigned_user_ids": [other.id], "title": "Новое название"},
    )

    assert response.status_code == 200
    assert response.json()["assigned_user_ids"] == [other.id]
    assert response.json()["title"] == "Новое название"


@pytest.mark.asyncio
async def test_update_cannot_empty_personal_assignments(
    client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User
):
    task = await create_task(test_session, task_type=TASK_PERSONAL, status=TASK_DRAFT, assignees=[ambassador.id])

    response = await client.patch(
        f"/api/tasks/{task.id}", headers=bearer_headers(manager), json={"assignedUserIds": []}
    )

    assert response.status_code == 400
    assert "assigned_user_ids" in response.json()["detail"]["errors"]


@pytest.mark.asyncio
async def test_update_does_not_publish(
    client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User, notifier, fresh_session: AsyncSession
):
    task = await create_task(test_session, task_type=TASK_PERSONAL, status=TASK_DRAFT, assignees=[ambassador.id])

    response = await client.patch(
        f"/api/tasks/{task.id}", headers=bearer_headers(manager), json={"status": TASK_ACTIVE}
    )

    assert response.status_code == 409
    assert notifier.sent == []
    stored = await fresh_session.get(Task, task.id)
    assert stored.status == TASK_DRAFT
    assert stored.published_at is None


@pytest.mark.asyncio
@pytest.mark.parametrize("current, requested, allowed", [
    (TASK_DRAFT, TASK_CANCELLED, True),
    (TASK_ACTIVE, TASK_COMPLETED, True),
    (TASK_ACTIVE, TASK_CANCELLED, True),
    (TASK_ACTIVE, TASK_ACTIVE, True),
    (TASK_ACTIVE, TASK_DRAFT, False),
    (TASK_COMPLETED, TASK_DRAFT, False),
    (TASK_COMPLETED, TASK_ACTIVE, False),
    (TASK_CANCELLED, TASK_COMPLETED, False),
])
async def test_update_status_transitions(test_session: AsyncSession, current, requested, allowed):
    task = await create_task(test_session, status=current)
    service = TaskService(test_session)

    if allowed:
        updated = await service.update_task(task.id, status=requested)
        assert updated.status == requested
    else:
        with pytest.raises(InvalidTaskTransitionError):
            await service.update_task(task.id, status=requested)


@pytest.mark.asyncio
async def test_staff_task_list(client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User):
    task = await create_task(test_session)
    await create_task(test_session, status=TASK_DRAFT)
    await create_report(test_session, ambassador, task)

    response = await client.get("/api/tasks", params={"status": TASK_ACTIVE}, headers=bearer_headers(manager))

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["reports_count"] == 1


# ============================================
# PUBLICATION
# ============================================

@pytest.mark.asyncio
async def test_publish_general_notifies_active_ambassadors(
    client: AsyncClient,
    test_session: AsyncSession,
    manager: User,
    ambassador: User,
    notifier,
    fresh_session: AsyncSession,
):
    pending = await create_user(test_session, telegram_id=777004, status=USER_PENDING)
    task = await create_task(test_session, title="Запуск", status=TASK_DRAFT)

    response = await client.post(f"/api/tasks/{task.id}/publish", headers=bearer_headers(manager))

    assert response.status_code == 200
    assert response.json()["status"] == TASK_ACTIVE
    assert response.json()["published_at"] is not None

    recipients = [m["chat_id"] for m in notifier.sent]
    assert recipients == [ambassador.telegram_id]
    assert pending.telegram_id not in recipients
    message = notifier.sent[0]
    assert "Запуск" in message["text"]
    assert message["button_url"] == f"https://app.test/tasks/{task.id}"

    audit = await fresh_session.scalar(select(AuditLog).where(AuditLog.action == AUDIT_TASK_PUBLISHED))
    assert audit.details["delivered"] == 1


@pytest.mark.asyncio
async def test_publish_personal_notifies_assignees_only(
    client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User, notifier
):
    other = await create_user(test_session, telegram_id=777005)
    task = await create_task(test_session, task_type=TASK_PERSONAL, status=TASK_DRAFT, assignees=[other.id])

    response = await client.post(f"/api/tasks/{task.id}/publish", headers=bearer_headers(manager))

    assert response.status_code == 200
    assert [m["chat_id"] for m in notifier.sent] == [other.telegram_id]


@pytest.mark.asyncio
async def test_publish_survives_delivery_failure(
    client: AsyncClient, test_session: AsyncSession, manager: User, ambassador: User, notifier
):
    second = await create_user(test_session, telegram_id=777006)
    notifier.fail_for.add(ambassador.telegram_id)
    task = await create_task(test_session, status=TASK_DRAFT)

    response = await client.post(f"/api/tasks/{task.id}/publish", headers=bearer_headers(manager))

    assert response.status_code == 200
    assert [m["chat_id"] for m in notifier.sent] == [second.telegram_id]


@pytest.mark.asyncio
async def test_publish_only_from_draft(client: AsyncClient, test_session: AsyncSession, manager: User):
    task = await create_task(test_session, status=TASK_COMPLETED)
    response = await client.post(f"/api/tasks/{task.id}/publish", headers=bearer_headers(manager))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_publish_personal_without_assignees_is_refused(test_session: AsyncSession, manager: User):
    task = await create_task(test_session, task_type=TASK_PERSONAL, status=TASK_DRAFT)
    task_id = task.id
    service = TaskService(test_session)

    with pytest.raises(ValidationError):
        await service.publish_task(task.id, manager.id)

    await test_session.rollback()
    stored = await test_session.get(Task, task_id, populate_existing=True)
    assert stored.status == TASK_DRAFT
    assert stored.type == TASK_PERSONAL


@pytest.mark.asyncio
async def test_publish_twice(test_session: AsyncSession, manager: User):
    task = await create_task(test_session, status=TASK_DRAFT)
    service = TaskService(test_session)
    await service.publish_task(task.id, manager.id)
    await test_session.commit()
    with pytest.raises(InvalidTaskTransitionError):
        await service.publish_task(task.id, manager.id)
