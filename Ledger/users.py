import logging
from decimal import Decimal, InvalidOperation

from Ledger.balance import CENT
from Ledger.errors import NotFoundError, ValidationError
from Ledger.models import db, Goal, User
from Ledger.outcomes import service_outcome

logger = logging.getLogger(__name__)


class UserService:
    """Alta de titulares y consulta de saldo. La autenticación queda fuera del motor."""

    @staticmethod
    @service_outcome("registrar usuario", success_status=201)
    def create_user(email, initial_balance=0):
        if not email or not str(email).strip():
            raise ValidationError("El email es obligatorio.")
        if User.query.filter_by(email=email).first():
            raise ValidationError("El email ya está registrado.", status_code=409)
        try:
            opening = Decimal(str(initial_balance)).quantize(CENT)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Formato de saldo inicial inválido.")

        user = User(email=email, initial_balance=opening, balance_amount=opening)
        db.session.add(user)
        db.session.flush()
        logger.info("Usuario %s registrado con saldo inicial %s", user.id, opening)
        return user

    @staticmethod
    def get_balance(user_id):
        """Saldo disponible, saldo inicial y total reservado en metas."""
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("Usuario no encontrado.")
        reserved = sum((g.current_amount for g in Goal.query.filter_by(user_id=user_id)), Decimal('0.00'))
        return {
            'user_id': user.id,
            'balance_amount': float(user.balance_amount),
            'initial_balance': float(user.initial_balance),
            'reserved_amount': float(reserved),
        }
