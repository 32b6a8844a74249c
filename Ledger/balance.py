"""Gestor de saldo: único punto que modifica ``User.balance_amount``.

Ninguna función de este módulo hace commit. El llamador ejecuta el ajuste
dentro de la misma unidad atómica que la transacción o meta que lo provoca,
y confirma o revierte todo junto.
"""
import logging
from decimal import Decimal, InvalidOperation

from Ledger.constants import TransactionType
from Ledger.errors import InsufficientFundsError, NotFoundError, ValidationError
from Ledger.models import db, User

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def to_amount(value, field_name='El monto'):
    """Convierte a Decimal de dos decimales y exige que sea positivo."""
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} no tiene un formato válido.")
    if amount <= 0:
        raise ValidationError(f"{field_name} debe ser positivo.")
    return amount


class BalanceService:
    """Aplica y revierte el efecto de las transacciones sobre el saldo."""

    @staticmethod
    def load_user(user_id):
        """Obtiene el usuario bloqueando su fila para el read-modify-write del saldo."""
        user = db.session.get(User, user_id, with_for_update=True)
        if user is None:
            raise NotFoundError("Usuario no encontrado.")
        return user

    @staticmethod
    def signed_amount(amount, type_, sign=1):
        """Efecto de una transacción sobre el saldo: ingreso suma, gasto resta."""
        type_ = TransactionType.parse(type_, 'Tipo')
        direction = 1 if type_ is TransactionType.INCOME else -1
        return Decimal(amount) * direction * sign

    @staticmethod
    def adjust_balance(user, delta):
        """Único punto de escritura del saldo."""
        user.balance_amount = (user.balance_amount or Decimal('0.00')) + Decimal(delta)
        logger.debug("Saldo del usuario %s ajustado en %s (nuevo saldo %s)", user.id, delta, user.balance_amount)
        return user.balance_amount

    @staticmethod
    def require_funds(user, amount):
        if (user.balance_amount or Decimal('0.00')) < amount:
            raise InsufficientFundsError(
                f"Fondos insuficientes: saldo {user.balance_amount}, monto requerido {amount}."
            )

    @staticmethod
    def apply_transaction_effect(user, amount, type_, sign=1, require_funds=False):
        """Aplica (sign=1) o revierte (sign=-1) el efecto de una transacción.

        Con ``require_funds`` un gasto que deje el saldo por debajo de cero se
        rechaza sin tocar nada.
        """
        delta = BalanceService.signed_amount(amount, type_, sign)
        if require_funds and delta < 0:
            BalanceService.require_funds(user, -delta)
        return BalanceService.adjust_balance(user, delta)

    @staticmethod
    def reverse_transaction_effect(user, amount, type_):
        return BalanceService.apply_transaction_effect(user, amount, type_, sign=-1)

    @staticmethod
    def replace_transaction_effect(user, old_amount, old_type, new_amount, new_type):
        """Revierte el efecto anterior y aplica el nuevo como un único delta neto."""
        delta = (
            BalanceService.signed_amount(old_amount, old_type, -1)
            + BalanceService.signed_amount(new_amount, new_type)
        )
        return BalanceService.adjust_balance(user, delta)

    @staticmethod
    def transfer_to_reserve(user, amount):
        """Saca ``amount`` del saldo disponible (fondeo de meta)."""
        BalanceService.require_funds(user, amount)
        return BalanceService.adjust_balance(user, -amount)

    @staticmethod
    def transfer_from_reserve(user, amount):
        return BalanceService.adjust_balance(user, amount)
