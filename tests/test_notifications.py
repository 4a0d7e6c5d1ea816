"""
tests/test_notifications.py
In-app notifications: storage, post-commit fan-out and the inbox API.
"""

import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit, discard_pending_callbacks
from config.redis_client import user_channel
from services.notification.service import booking_link, notify
from shared.models.models import Notification, NotificationType, User
from tests.conftest import auth_headers


async def _seed(db: AsyncSession, user: User, count: int = 3):
    for i in range(count):
        await notify(db, user.id, NotificationType.GENERAL, f"Message {i}")
    await commit(db)


@pytest.mark.asyncio
async def test_notify_publishes_after_commit(db: AsyncSession, redis, artist: User, celery_calls):
    pubsub = redis.pubsub()
    await pubsub.subscribe(user_channel(artist.id))
    await pubsub.get_message(timeout=1)  # subscribe confirmation

    booking_id = uuid.uuid4()
    notif = await notify(
        db, artist.id, NotificationType.BOOKING_CONFIRMED, "Your session is confirmed.", booking_id=booking_id
    )
    assert notif.link == booking_link(booking_id)
    # Nothing leaves the process before commit
    celery_calls.email.delay.assert_not_called()

    await commit(db)

    celery_calls.email.delay.assert_called_once_with(str(notif.id))
    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
    event = json.loads(message["data"])
    assert event["event"] == "notification"
    assert event["data"]["id"] == str(notif.id)
    assert event["data"]["type"] == "BOOKING_CONFIRMED"
    await pubsub.aclose()


@pytest.mark.asyncio
async def test_general_notifications_are_not_emailed(db: AsyncSession, artist: User, celery_calls):
    await notify(db, artist.id, NotificationType.GENERAL, "Hello")
    await commit(db)
    celery_calls.email.delay.assert_not_called()


@pytest.mark.asyncio
async def test_discarded_callbacks_never_run(db: AsyncSession, artist: User, celery_calls):
    await notify(db, artist.id, NotificationType.BOOKING_DENIED, "Denied")
    discard_pending_callbacks(db)
    await db.rollback()
    await commit(db)
    celery_calls.email.delay.assert_not_called()


@pytest.mark.asyncio
async def test_list_and_unread_filter(client: AsyncClient, db: AsyncSession, artist: User):
    await _seed(db, artist)

    response = await client.get("/notifications", headers=auth_headers(artist))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["pages"] == 1

    first_id = data["items"][0]["id"]
    assert (await client.post(f"/notifications/{first_id}/read", headers=auth_headers(artist))).status_code == 200

    unread = await client.get("/notifications", params={"unread_only": True}, headers=auth_headers(artist))
    assert unread.json()["total"] == 2

    count = await client.get("/notifications/unread-count", headers=auth_headers(artist))
    assert count.json() == {"unread_count": 2}


@pytest.mark.asyncio
async def test_mark_all_read(client: AsyncClient, db: AsyncSession, artist: User):
    await _seed(db, artist)
    response = await client.post("/notifications/read-all", headers=auth_headers(artist))
    assert response.json()["success"] is True

    count = await client.get("/notifications/unread-count", headers=auth_headers(artist))
    assert count.json() == {"unread_count": 0}

    rows = (await db.execute(select(Notification.read_at).where(Notification.user_id == artist.id))).scalars()
    assert all(read_at is not None for read_at in rows)


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_notification(
    client: AsyncClient, db: AsyncSession, artist: User, engineer: User
):
    notif = await notify(db, artist.id, NotificationType.GENERAL, "Private")
    await commit(db)

    assert (await client.post(f"/notifications/{notif.id}/read", headers=auth_headers(engineer))).status_code == 404
    assert (await client.delete(f"/notifications/{notif.id}", headers=auth_headers(engineer))).status_code == 404


@pytest.mark.asyncio
async def test_dismiss_deletes(client: AsyncClient, db: AsyncSession, artist: User):
    notif = await notify(db, artist.id, NotificationType.GENERAL, "Bye")
    await commit(db)

    response = await client.delete(f"/notifications/{notif.id}", headers=auth_headers(artist))
    assert response.status_code == 200
    remaining = await client.get("/notifications", headers=auth_headers(artist))
    assert remaining.json()["total"] == 0


@pytest.mark.asyncio
async def test_notifications_require_auth(client: AsyncClient):
    response = await client.get("/notifications")
    assert response.status_code == 401
