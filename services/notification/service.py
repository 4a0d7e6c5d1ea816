"""
services/notification/service.py
Central notification dispatcher.

1. Save to DB (in-app), inside the caller's transaction
2. After commit: push over the user's realtime channel
3. After commit: enqueue an email for booking lifecycle types

Delivery failures are logged, never raised.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.database import on_commit
from config.redis_client import publish_event, user_channel
from shared.models.models import Notification, NotificationType

logger = logging.getLogger(__name__)

EMAIL_TYPES = {
    NotificationType.BOOKING_REQUEST,
    NotificationType.BOOKING_CONFIRMED,
    NotificationType.BOOKING_DENIED,
    NotificationType.BOOKING_CANCELLED,
    NotificationType.BOOKING_COMPLETED,
}


def booking_link(booking_id) -> dict:
    return {"view": "MY_BOOKINGS", "entity_id": str(booking_id)}


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    message: str,
    booking_id: Optional[uuid.UUID] = None,
    link: Optional[dict] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Notification:
    notif = Notification(
        user_id=user_id,
        type=type,
        message=message,
        booking_id=booking_id,
        link=link if link is not None else (booking_link(booking_id) if booking_id else None),
        actor_id=actor_id,
    )
    db.add(notif)
    await db.flush()

    payload = {
        "id": str(notif.id),
        "type": type.value,
        "message": message,
        "booking_id": str(booking_id) if booking_id else None,
        "link": notif.link,
    }

    async def _push():
        await publish_event(user_channel(user_id), "notification", payload)

    on_commit(db, _push)

    if type in EMAIL_TYPES:
        notification_id = str(notif.id)

        def _email():
            from tasks.notification_tasks import send_notification_email

            send_notification_email.delay(notification_id)

        on_commit(db, _email)

    return notif
