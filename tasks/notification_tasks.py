"""
tasks/notification_tasks.py
Celery tasks for notification email delivery and session reminders.

All tasks are idempotent.
In-app rows are written by services/notification/service.py; these tasks
only fan out to email.

Usage (queued after commit by the notification service):
    send_notification_email.delay(str(notification.id))
"""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select

from config.database import get_sync_session
from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Core Delivery Function ─────────────────────────────────────────────────────

def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    if not settings.RESEND_API_KEY:
        logger.info(f"RESEND_API_KEY not set, skipping email to {to_email}")
        return True
    try:
        import resend
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


# ── Templates ──────────────────────────────────────────────────────────────────

SUBJECTS = {
    "BOOKING_REQUEST": "New session request",
    "BOOKING_CONFIRMED": "Session confirmed",
    "BOOKING_DENIED": "Session request update",
    "BOOKING_CANCELLED": "Session cancelled",
    "BOOKING_COMPLETED": "Session complete",
    "GENERAL": "Stoodioz update",
}


def _render_html(name: str, message: str, link: dict = None) -> str:
    url = settings.FRONTEND_URL
    if link and link.get("view") == "MY_BOOKINGS" and link.get("entity_id"):
        url = f"{settings.FRONTEND_URL}/bookings/{link['entity_id']}"
    return (
        f"<p>Hi {name},</p>"
        f"<p>{message}</p>"
        f'<p><a href="{url}">Open Stoodioz</a></p>'
    )


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_notification_email(self, notification_id: str):
    """Email one stored notification to its recipient. Skips if already sent."""
    from shared.models.models import Notification, User

    db = get_sync_session()
    try:
        notif = db.execute(
            select(Notification).where(Notification.id == UUID(notification_id))
        ).scalar_one_or_none()
        if not notif:
            logger.error(f"send_notification_email: notification {notification_id} not found")
            return False
        if notif.sent_email:
            return False

        user = db.execute(select(User).where(User.id == notif.user_id)).scalar_one_or_none()
        if not user or not user.email:
            return False

        subject = SUBJECTS.get(notif.type.value, SUBJECTS["GENERAL"])
        success = _send_email(user.email, subject, _render_html(user.name, notif.message, notif.link))
        if not success:
            raise self.retry(countdown=60 * (2 ** self.request.retries))

        notif.sent_email = True
        db.commit()
        return True
    finally:
        db.close()


@celery_app.task
def send_booking_reminders():
    """
    Beat task: runs every hour.
    Reminds participants of CONFIRMED sessions starting in
    BOOKING_REMINDER_HOURS to BOOKING_REMINDER_HOURS + 1 hours.
    """
    from shared.models.models import (
        Booking,
        BookingStatus,
        Notification,
        NotificationType,
        Stoodio,
    )

    db = get_sync_session()
    try:
        now = datetime.now(timezone.utc)
        window_start = now + timedelta(hours=settings.BOOKING_REMINDER_HOURS)
        window_end = window_start + timedelta(hours=1)

        bookings = db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.starts_at >= window_start,
                Booking.starts_at < window_end,
            )
        ).scalars().all()

        created = []
        for booking in bookings:
            owner_id = db.execute(
                select(Stoodio.owner_id).where(Stoodio.id == booking.stoodio_id)
            ).scalar_one_or_none()
            recipients = set(booking.participant_ids)
            if owner_id:
                recipients.add(owner_id)

            for user_id in recipients:
                notif = Notification(
                    user_id=user_id,
                    booking_id=booking.id,
                    type=NotificationType.GENERAL,
                    message=(
                        f"Reminder: session {booking.booking_number} starts "
                        f"{booking.starts_at:%b %d at %H:%M} UTC."
                    ),
                    link={"view": "MY_BOOKINGS", "entity_id": str(booking.id)},
                )
                db.add(notif)
                created.append(notif)

        db.commit()
        for notif in created:
            send_notification_email.delay(str(notif.id))

        logger.info(f"Sent {len(created)} reminders for {len(bookings)} sessions")
        return len(created)
    except Exception as e:
        db.rollback()
        logger.exception(f"send_booking_reminders failed: {e}")
        raise
    finally:
        db.close()
