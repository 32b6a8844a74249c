import logging
from decimal import Decimal

from sqlalchemy import func

from Ledger.models import db, DailySnapshot, Goal, User
from Ledger.periods import as_date, utc_now

logger = logging.getLogger(__name__)


class SnapshotService:
    """Capturas diarias de saldo y reserva total por usuario."""

    @staticmethod
    def take_daily_snapshots(now=None):
        """Una captura por usuario y día; los usuarios ya capturados hoy se omiten."""
        today = (now or utc_now()).date()
        already = {
            user_id for (user_id,) in
            db.session.query(DailySnapshot.user_id).filter(DailySnapshot.date == today)
        }
        reserves = dict(
            db.session.query(Goal.user_id, func.coalesce(func.sum(Goal.current_amount), 0))
            .group_by(Goal.user_id)
            .all()
        )

        result = {'created': 0, 'skipped': 0, 'failed': 0}
        for user_id, balance in db.session.query(User.id, User.balance_amount).order_by(User.id).all():
            if user_id in already:
                result['skipped'] += 1
                continue
            try:
                db.session.add(DailySnapshot(
                    user_id=user_id,
                    date=today,
                    balance_amount=balance or Decimal('0.00'),
                    reserve_amount=Decimal(str(reserves.get(user_id, 0))),
                ))
                db.session.commit()
                result['created'] += 1
            except Exception:
                db.session.rollback()
                result['failed'] += 1
                logger.exception("Fallo al registrar la captura diaria del usuario %s", user_id)

        logger.info("Capturas diarias del %s: %s", today, result)
        return result

    @staticmethod
    def get_history(user_id, start_date, end_date):
        return (
            DailySnapshot.query
            .filter(DailySnapshot.user_id == user_id,
                    DailySnapshot.date >= as_date(start_date),
                    DailySnapshot.date <= as_date(end_date))
            .order_by(DailySnapshot.date.asc())
            .all()
        )

    @staticmethod
    def get_latest(user_id):
        return (
            DailySnapshot.query
            .filter_by(user_id=user_id)
            .order_by(DailySnapshot.date.desc())
            .first()
        )
