"""
tasks/wallet_tasks.py
Ledger settlement and reconciliation.

- settle_transaction: countdown task scheduled after a PENDING entry commits
- settle_pending_transactions: periodic sweep for entries whose task was lost
- audit_wallet_balances: nightly check of users.wallet_balance == sum(amount)

Settlement only flips status; the balance already moved when the entry was
appended. All tasks are idempotent.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from config.database import get_sync_session
from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=5, default_retry_delay=60)
def settle_transaction(self, transaction_id: str):
    """PENDING → COMPLETED for one ledger entry. Returns True if this call settled it."""
    from uuid import UUID

    from shared.models.models import Transaction, TransactionStatus

    db = get_sync_session()
    try:
        result = db.execute(
            update(Transaction)
            .where(
                Transaction.id == UUID(transaction_id),
                Transaction.status == TransactionStatus.PENDING,
            )
            .values(status=TransactionStatus.COMPLETED, settled_at=datetime.now(timezone.utc))
        )
        db.commit()
        settled = result.rowcount == 1
        if settled:
            logger.info(f"Settled transaction {transaction_id}")
        else:
            logger.info(f"Transaction {transaction_id} already settled or missing")
        return settled
    except Exception as e:
        db.rollback()
        logger.exception(f"settle_transaction failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()


@celery_app.task
def settle_pending_transactions():
    """
    Beat task: runs every 5 minutes.
    Settles every PENDING entry older than the settlement delay.
    """
    from shared.models.models import Transaction, TransactionStatus

    db = get_sync_session()
    try:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.SETTLEMENT_DELAY_SECONDS)
        result = db.execute(
            update(Transaction)
            .where(
                Transaction.status == TransactionStatus.PENDING,
                Transaction.created_at <= cutoff,
            )
            .values(status=TransactionStatus.COMPLETED, settled_at=now)
        )
        db.commit()
        logger.info(f"Settlement sweep completed {result.rowcount} transactions")
        return result.rowcount
    except Exception as e:
        db.rollback()
        logger.exception(f"settle_pending_transactions failed: {e}")
        raise
    finally:
        db.close()


@celery_app.task
def audit_wallet_balances():
    """
    Beat task: runs nightly.
    Logs every user whose cached balance differs from the ledger sum.
    Returns the drifted user ids; never rewrites balances.
    """
    from services.wallet.ledger import to_money
    from shared.models.models import Transaction, User

    db = get_sync_session()
    try:
        ledger_sum = (
            select(Transaction.user_id, func.coalesce(func.sum(Transaction.amount), 0).label("total"))
            .group_by(Transaction.user_id)
            .subquery()
        )
        rows = db.execute(
            select(User.id, User.wallet_balance, func.coalesce(ledger_sum.c.total, 0))
            .outerjoin(ledger_sum, ledger_sum.c.user_id == User.id)
        ).all()

        drifted = []
        for user_id, cached, total in rows:
            if to_money(cached or 0) != to_money(total or 0):
                logger.error(f"Wallet drift for user {user_id}: cached={cached} ledger={total}")
                drifted.append(str(user_id))

        logger.info(f"Wallet audit checked {len(rows)} users, {len(drifted)} drifted")
        return drifted
    finally:
        db.close()
