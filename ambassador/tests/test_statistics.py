"""
Tests for report statistics and the ambassador leaderboard.
"""
from datetime import datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import REPORT_APPROVED, REPORT_REJECTED, USER_SUSPENDED
from ambassador.app.models.report import Report, Story, VideoLink
from ambassador.app.models.user import User
from ambassador.app.services.statistics import StatisticsService, report_metrics, rating
from ambassador.tests.conftest import create_user, create_report, bearer_headers


def test_rating_weights():
    metrics = {"views": 1000, "likes": 50, "comments": 10, "story_reach": 301}
    # 1000 + 2*50 + 3*10 + 0.5*301
    assert rating(metrics) == 1280.5


def test_report_metrics_treat_missing_counters_as_zero():
    report = Report(type="VIDEO_LINK")
    report.video_links = [
        VideoLink(position=0, url="https://a", views=100, likes=None, comments=2),
        VideoLink(position=1, url="https://b", views=None, likes=5, comments=None),
    ]
    report.stories = [Story(position=0, story_url="https://s", reach=40)]
    assert report_metrics(report) == {
        "videos": 2, "stories": 1, "views": 100, "likes": 5, "comments": 2, "story_reach": 40,
    }


@pytest.mark.asyncio
async def test_overview_counts_only_approved(
    client: AsyncClient, test_session: AsyncSession, ambassador: User, manager: User, general_task
):
    await create_report(test_session, ambassador, general_task, status=REPORT_APPROVED, views=500, likes=20)
    await create_report(test_session, ambassador, general_task, status=REPORT_APPROVED, views=100, likes=0)
    await create_report(test_session, ambassador, general_task, status=REPORT_REJECTED, views=9999)
    await create_report(test_session, ambassador, general_task, views=9999)

    response = await client.get("/api/statistics/overview", headers=bearer_headers(manager))

    assert response.status_code == 200
    data = response.json()
    assert data["totals"]["reports"] == 2
    assert data["totals"]["views"] == 600
    assert data["totals"]["likes"] == 20
    assert data["totals"]["videos"] == 2
    assert {r["user_name"] for r in data["reports"]} == {"Анна Иванова"}
    assert {r["task_title"] for r in data["reports"]} == {"Общее задание"}


@pytest.mark.asyncio
async def test_overview_period(test_session: AsyncSession, ambassador: User, general_task):
    await create_report(
        test_session, ambassador, general_task, status=REPORT_APPROVED, submitted_at=datetime(2026, 3, 1, 12)
    )
    await create_report(
        test_session, ambassador, general_task, status=REPORT_APPROVED, submitted_at=datetime(2026, 4, 1, 12)
    )

    march = await StatisticsService(test_session).overview(datetime(2026, 3, 1), datetime(2026, 3, 31))

    assert march["totals"]["reports"] == 1


@pytest.mark.asyncio
async def test_inverted_period_is_rejected(client: AsyncClient, manager: User):
    response = await client.get(
        "/api/statistics/overview",
        params={"start_date": "2026-05-01T00:00:00", "end_date": "2026-04-01T00:00:00"},
        headers=bearer_headers(manager),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_leaderboard_order(
    client: AsyncClient, test_session: AsyncSession, ambassador: User, manager: User, general_task
):
    runner_up = await create_user(test_session, telegram_id=810001, first_name="Петр", last_name=None)
    tied = await create_user(test_session, telegram_id=810002)
    blocked = await create_user(test_session, telegram_id=810003, status=USER_SUSPENDED)
    quiet = await create_user(test_session, telegram_id=810004)

    await create_report(test_session, ambassador, general_task, status=REPORT_APPROVED, views=1000, likes=10, comments=0)
    await create_report(test_session, runner_up, general_task, status=REPORT_APPROVED, views=500, likes=0, comments=0)
    await create_report(test_session, tied, general_task, status=REPORT_APPROVED, views=500, likes=0, comments=0)
    await create_report(test_session, blocked, general_task, status=REPORT_APPROVED, views=10**6)
    await create_report(test_session, manager, general_task, status=REPORT_APPROVED, views=10**6)
    await create_report(test_session, quiet, general_task, views=10**6)

    response = await client.get("/api/statistics/leaderboard", headers=bearer_headers(manager))

    assert response.status_code == 200
    board = response.json()["leaderboard"]
    assert [e["user_id"] for e in board] == [ambassador.id, runner_up.id, tied.id]
    assert board[0]["rating"] == 1020.0
    assert board[0]["reports_count"] == 1
    assert board[1]["user_name"] == "Петр"


@pytest.mark.asyncio
async def test_empty_leaderboard(test_session: AsyncSession, ambassador: User):
    board = await StatisticsService(test_session).leaderboard()
    assert board["leaderboard"] == []
