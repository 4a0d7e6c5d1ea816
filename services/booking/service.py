"""
services/booking/service.py
Booking orchestration: factory + state machine + ledger + side effects.

Each transition persists with a conditional UPDATE guarded on the status the
guard saw, so when two writers race only the first one wins; the loser gets
InvalidTransition and writes nothing to the ledger. Side effects (chat,
notifications, settlement) are queued on the session and run after commit.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit
from services.booking import state_machine
from services.booking.factory import BookingFactory
from services.messaging.service import ensure_booking_chat
from services.notification.service import notify
from services.wallet.ledger import WalletLedger, to_money
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    NotificationType,
    Stoodio,
    TransactionCategory,
    TransactionStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import BookingCreateRequest
from shared.utils.exceptions import BookingNotPermitted, InvalidTransition

logger = logging.getLogger(__name__)

CONCURRENT_CHANGE = "booking changed concurrently"


class BookingService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = WalletLedger(db)
        self.factory = BookingFactory(db)

    # ── Loading / visibility ───────────────────────────────────

    async def get_or_404(self, booking_id: uuid.UUID) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return booking

    async def stoodio_owner_id(self, booking: Booking) -> Optional[uuid.UUID]:
        return await self.db.scalar(select(Stoodio.owner_id).where(Stoodio.id == booking.stoodio_id))

    async def can_view(self, booking: Booking, user: User) -> bool:
        if user.id in booking.participant_ids or booking.requested_engineer_id == user.id:
            return True
        # Open jobs are visible to every engineer
        if booking.status == BookingStatus.PENDING and user.role == UserRole.ENGINEER:
            return True
        return await self.stoodio_owner_id(booking) == user.id

    async def get_for_user(self, booking_id: uuid.UUID, user: User) -> Booking:
        booking = await self.get_or_404(booking_id)
        if not await self.can_view(booking, user):
            raise HTTPException(status_code=403, detail="Not authorized to view this booking")
        return booking

    # ── Helpers ────────────────────────────────────────────────

    def _audit(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: Optional[User],
        reason: str = None,
        metadata: dict = None,
    ) -> None:
        """Append an immutable audit log entry for every status change."""
        self.db.add(
            BookingAuditLog(
                booking_id=booking.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_by_id=actor.id if actor else None,
                reason=reason,
                audit_metadata=metadata,
            )
        )

    async def _conditional_update(
        self, booking: Booking, action: str, expected: BookingStatus, values: dict, *criteria
    ) -> None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            logger.warning(f"Lost race on {action} for booking {booking.booking_number}")
            raise InvalidTransition(expected.value, action, CONCURRENT_CHANGE)
        await self.db.refresh(booking)

    async def _notify_many(
        self,
        user_ids: Iterable[Optional[uuid.UUID]],
        type: NotificationType,
        message: str,
        booking: Booking,
        actor: Optional[User] = None,
    ) -> None:
        seen = set()
        for uid in user_ids:
            if uid is None or uid in seen or (actor is not None and uid == actor.id):
                continue
            seen.add(uid)
            await notify(
                self.db, uid, type, message,
                booking_id=booking.id, actor_id=actor.id if actor else None,
            )

    # ── Create ─────────────────────────────────────────────────

    async def create(self, data: BookingCreateRequest, actor: User) -> Booking:
        stoodio = await self.factory.load_stoodio(data.stoodio_id)
        try:
            booking = await self.factory.build(data, actor, stoodio)
        except BookingNotPermitted as e:
            await notify(self.db, actor.id, NotificationType.GENERAL, e.detail)
            await commit(self.db)
            raise

        self.db.add(booking)
        await self.db.flush()
        self._audit(booking, None, booking.status, actor, reason=f"created via {booking.request_type.value}")

        if booking.total_cost > 0:
            await self.ledger.debit(
                actor.id,
                booking.total_cost,
                TransactionCategory.SESSION_PAYMENT,
                f"Session {booking.booking_number} at {stoodio.name}",
                related_booking_id=booking.id,
                related_user_id=stoodio.owner_id,
            )

        if booking.status == BookingStatus.CONFIRMED:
            await ensure_booking_chat(self.db, booking)
            await notify(
                self.db, actor.id, NotificationType.BOOKING_CONFIRMED,
                f"Your session at {stoodio.name} is confirmed.",
                booking_id=booking.id,
            )
            if booking.engineer_id:
                await notify(
                    self.db, booking.engineer_id, NotificationType.BOOKING_CONFIRMED,
                    f"You've been booked for a session at {stoodio.name}.",
                    booking_id=booking.id, actor_id=actor.id,
                )
        elif booking.status == BookingStatus.PENDING_APPROVAL:
            await notify(
                self.db, booking.requested_engineer_id, NotificationType.BOOKING_REQUEST,
                f"{actor.name} requested you for a session at {stoodio.name}.",
                booking_id=booking.id, actor_id=actor.id,
            )
        else:
            await notify(
                self.db, actor.id, NotificationType.GENERAL,
                f"Your session at {stoodio.name} is listed. We'll let you know when an engineer accepts.",
                booking_id=booking.id,
            )

        logger.info(f"Booking {booking.booking_number} created as {booking.status.value}")
        return booking

    # ── Transitions ────────────────────────────────────────────

    async def accept(self, booking_id: uuid.UUID, actor: User) -> Booking:
        booking = await self.get_or_404(booking_id)
        state_machine.check_accept(booking, actor)
        from_status = booking.status

        criteria = []
        if from_status == BookingStatus.PENDING_APPROVAL:
            criteria.append(Booking.requested_engineer_id == actor.id)
        await self._conditional_update(
            booking, "accept", from_status,
            {
                "status": BookingStatus.CONFIRMED,
                "engineer_id": actor.id,
                "confirmed_at": datetime.now(timezone.utc),
            },
            *criteria,
        )
        self._audit(booking, from_status, BookingStatus.CONFIRMED, actor)

        await ensure_booking_chat(self.db, booking)
        await notify(
            self.db, booking.booked_by_id, NotificationType.BOOKING_CONFIRMED,
            f"{actor.name} accepted your session {booking.booking_number}.",
            booking_id=booking.id, actor_id=actor.id,
        )
        logger.info(f"Booking {booking.booking_number} accepted by engineer {actor.id}")
        return booking

    async def deny(self, booking_id: uuid.UUID, actor: User) -> Booking:
        booking = await self.get_or_404(booking_id)
        state_machine.check_deny(booking, actor)

        await self._conditional_update(
            booking, "deny", BookingStatus.PENDING_APPROVAL,
            {"status": BookingStatus.PENDING, "requested_engineer_id": None},
            Booking.requested_engineer_id == actor.id,
        )
        self._audit(booking, BookingStatus.PENDING_APPROVAL, BookingStatus.PENDING, actor)

        await notify(
            self.db, booking.booked_by_id, NotificationType.BOOKING_DENIED,
            f"{actor.name} can't take session {booking.booking_number}. "
            f"It's now open to other engineers.",
            booking_id=booking.id, actor_id=actor.id,
        )
        logger.info(f"Booking {booking.booking_number} denied by engineer {actor.id}")
        return booking

    async def cancel(self, booking_id: uuid.UUID, actor: User, now: datetime = None) -> Booking:
        booking = await self.get_or_404(booking_id)
        state_machine.check_cancel(booking, actor)
        from_status = booking.status

        hours = state_machine.hours_until(booking.starts_at, now)
        pct = state_machine.refund_percentage(hours)
        refund = state_machine.refund_amount(booking.total_cost, hours)

        await self._conditional_update(
            booking, "cancel", from_status,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_at": datetime.now(timezone.utc),
                "refund_percentage": pct,
                "refund_amount": refund,
            },
        )
        self._audit(
            booking, from_status, BookingStatus.CANCELLED, actor,
            metadata={"hours_until_session": hours, "refund_amount": str(refund)},
        )

        if refund > 0:
            await self.ledger.credit(
                booking.booked_by_id,
                refund,
                TransactionCategory.REFUND,
                f"Refund for cancelled session {booking.booking_number} ({int(pct * 100)}%)",
                related_booking_id=booking.id,
            )

        owner_id = await self.stoodio_owner_id(booking)
        await self._notify_many(
            [booking.engineer_id, booking.requested_engineer_id, booking.producer_id, owner_id],
            NotificationType.BOOKING_CANCELLED,
            f"Session {booking.booking_number} was cancelled.",
            booking, actor,
        )
        logger.info(f"Booking {booking.booking_number} cancelled at {hours}h, refund {refund}")
        return booking

    async def complete(self, booking_id: uuid.UUID, actor: User) -> Booking:
        booking = await self.get_or_404(booking_id)
        owner_id = await self.stoodio_owner_id(booking)
        state_machine.check_complete(booking, actor, owner_id)

        bound = Booking.engineer_id.is_(None) if booking.engineer_id is None else Booking.engineer_id == actor.id
        await self._conditional_update(
            booking, "complete", BookingStatus.CONFIRMED,
            {"status": BookingStatus.COMPLETED, "completed_at": datetime.now(timezone.utc)},
            bound,
        )
        self._audit(booking, BookingStatus.CONFIRMED, BookingStatus.COMPLETED, actor)

        label = f"session {booking.booking_number}"
        payouts = [
            (owner_id, booking.stoodio_cost, f"Stoodio payout for {label}"),
            (booking.engineer_id, booking.engineer_fee, f"Engineer payout for {label}"),
        ]
        if booking.producer_id and booking.producer_id != booking.booked_by_id:
            payouts.append((booking.producer_id, booking.pull_up_fee, f"Pull-up fee for {label}"))

        for user_id, amount, description in payouts:
            if user_id is None or not amount or Decimal(amount) <= 0:
                continue
            await self.ledger.credit(
                user_id,
                amount,
                TransactionCategory.SESSION_PAYOUT,
                description,
                related_booking_id=booking.id,
                related_user_id=booking.booked_by_id,
                status=TransactionStatus.PENDING,
            )

        await self._notify_many(
            [booking.booked_by_id, booking.artist_id, booking.producer_id, owner_id],
            NotificationType.BOOKING_COMPLETED,
            f"Session {booking.booking_number} is complete.",
            booking, actor,
        )
        logger.info(f"Booking {booking.booking_number} completed by {actor.role.value.lower()} {actor.id}")
        return booking

    async def tip(self, booking_id: uuid.UUID, actor: User, amount) -> Booking:
        booking = await self.get_or_404(booking_id)
        state_machine.check_tip(booking, actor)
        amount = to_money(amount)

        await self._conditional_update(
            booking, "tip", BookingStatus.COMPLETED, {"tip": amount}, Booking.tip.is_(None),
        )

        await self.ledger.debit(
            actor.id, amount, TransactionCategory.TIP_PAYMENT,
            f"Tip for session {booking.booking_number}",
            related_booking_id=booking.id, related_user_id=booking.engineer_id,
        )
        await self.ledger.credit(
            booking.engineer_id, amount, TransactionCategory.TIP_PAYOUT,
            f"Tip from {actor.name} for session {booking.booking_number}",
            related_booking_id=booking.id, related_user_id=actor.id,
        )
        await notify(
            self.db, booking.engineer_id, NotificationType.NEW_TIP,
            f"{actor.name} tipped you ${amount} for session {booking.booking_number}.",
            booking_id=booking.id, actor_id=actor.id,
        )
        logger.info(f"Tip {amount} on booking {booking.booking_number}")
        return booking

    # ── Reads ──────────────────────────────────────────────────

    async def refund_quote(self, booking_id: uuid.UUID, actor: User, now: datetime = None) -> dict:
        booking = await self.get_or_404(booking_id)
        if booking.booked_by_id != actor.id:
            raise HTTPException(status_code=403, detail="Only the payer can request a refund quote")
        hours = state_machine.hours_until(booking.starts_at, now)
        refund = state_machine.refund_amount(booking.total_cost, hours)
        return {
            "booking_id": booking.id,
            "hours_until_session": hours,
            "refund_percentage": state_machine.refund_percentage(hours),
            "refund_amount": refund,
            "cancellation_fee": to_money(Decimal(booking.total_cost) - refund),
            "policy_message": state_machine.policy_message(hours),
        }
