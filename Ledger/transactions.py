import logging
from decimal import Decimal

from Ledger.balance import BalanceService, to_amount
from Ledger.budgets import BudgetService
from Ledger.constants import Category, TransactionType
from Ledger.errors import NotFoundError, ValidationError
from Ledger.models import db, Transaction
from Ledger.outcomes import service_outcome
from Ledger.periods import as_datetime, utc_now

logger = logging.getLogger(__name__)


def resolve_category(category, type_):
    """Los ingresos sin categoría van a 'Income'; los gastos exigen una categoría de gasto."""
    if type_ is TransactionType.INCOME:
        if category is None or category == '':
            return Category.INCOME
        return Category.parse(category, 'Categoría')
    if category is None or category == '':
        raise ValidationError("La categoría es obligatoria para un gasto.")
    return Category.parse_spending(category)


def clean_title(title):
    if title is None or not str(title).strip():
        raise ValidationError("El título es obligatorio.")
    title = str(title).strip()
    if len(title) > 100:
        raise ValidationError("El título no puede superar los 100 caracteres.")
    return title


class TransactionService:
    """Servicio de transacciones: cada alta, edición o baja mueve saldo y presupuesto juntos."""

    @staticmethod
    def get_owned_transaction(transaction_id, user_id):
        transaction = db.session.get(Transaction, transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise NotFoundError("Transacción no encontrada o no pertenece al usuario.")
        return transaction

    @staticmethod
    @service_outcome("registrar transacción", success_status=201)
    def record_transaction(user_id, title, amount, type, category=None, description=None, date=None):
        """Registra una nueva transacción (Ingreso o Gasto)."""
        user = BalanceService.load_user(user_id)
        type_ = TransactionType.parse(type, 'Tipo')
        transaction = Transaction(
            user_id=user.id,
            title=clean_title(title),
            description=description,
            amount=to_amount(amount),
            category=resolve_category(category, type_),
            type=type_,
            date=as_datetime(date) if date else utc_now(),
        )
        db.session.add(transaction)

        BalanceService.apply_transaction_effect(user, transaction.amount, transaction.type)
        BudgetService.link_expense(transaction)
        db.session.flush()

        logger.info("Transacción %s creada. Usuario: %s, Tipo: %s, Monto: %s",
                    transaction.id, user_id, type_.value, transaction.amount)
        return transaction

    @staticmethod
    @service_outcome("actualizar transacción")
    def update_transaction(transaction_id, user_id, title=None, amount=None, type=None,
                           category=None, description=None, date=None):
        """Actualiza una transacción; saldo y presupuestos se recalculan con un delta neto."""
        transaction = TransactionService.get_owned_transaction(transaction_id, user_id)
        user = BalanceService.load_user(user_id)

        old_amount, old_type = transaction.amount, transaction.type
        new_type = TransactionType.parse(type, 'Tipo') if type is not None else old_type
        new_amount = to_amount(amount) if amount is not None else old_amount
        if category is not None or new_type is not old_type:
            new_category = resolve_category(
                category if category is not None else transaction.category.value, new_type
            )
        else:
            new_category = transaction.category
        new_title = clean_title(title) if title is not None else transaction.title
        new_date = as_datetime(date) if date is not None else transaction.date

        # Se quita el efecto antiguo sobre el presupuesto antes de cambiar los campos
        BudgetService.unlink_expense(transaction)

        if description is not None:
            transaction.description = description
        transaction.title = new_title
        transaction.date = new_date
        transaction.amount = new_amount
        transaction.type = new_type
        transaction.category = new_category

        BalanceService.replace_transaction_effect(user, old_amount, old_type, new_amount, new_type)
        BudgetService.link_expense(transaction)

        logger.info("Transacción %s actualizada. Usuario: %s", transaction.id, user_id)
        return transaction

    @staticmethod
    @service_outcome("eliminar transacción")
    def delete_transaction(transaction_id, user_id):
        """Elimina una transacción del usuario y revierte su efecto."""
        transaction = TransactionService.get_owned_transaction(transaction_id, user_id)
        user = BalanceService.load_user(user_id)

        BudgetService.unlink_expense(transaction)
        BalanceService.reverse_transaction_effect(user, transaction.amount, transaction.type)
        db.session.delete(transaction)

        logger.info("Transacción %s eliminada. Usuario: %s", transaction_id, user_id)
        return {'id': transaction_id}

    @staticmethod
    @service_outcome("consultar transacción")
    def get_transaction(transaction_id, user_id):
        return TransactionService.get_owned_transaction(transaction_id, user_id)

    @staticmethod
    def get_transactions(user_id, start_date=None, end_date=None):
        """Transacciones del usuario, más recientes primero, con filtro de fechas opcional."""
        query = Transaction.query.filter_by(user_id=user_id)
        if start_date:
            query = query.filter(Transaction.date >= as_datetime(start_date))
        if end_date:
            query = query.filter(Transaction.date <= as_datetime(end_date))
        return query.order_by(Transaction.date.desc(), Transaction.id.desc()).all()

    @staticmethod
    def calculate_balance(user_id, start_date=None, end_date=None):
        """Ingresos, gastos y neto derivados del historial (vista de solo lectura)."""
        transactions = TransactionService.get_transactions(user_id, start_date, end_date)

        total_income = sum((t.amount for t in transactions if t.type is TransactionType.INCOME), Decimal('0.00'))
        total_expense = sum((t.amount for t in transactions if t.type is TransactionType.EXPENSE), Decimal('0.00'))

        return {
            'total_income': float(total_income),
            'total_expense': float(total_expense),
            'consolidated_balance': float(total_income - total_expense),
        }

    @staticmethod
    def get_transaction_summary(user_id, now=None):
        """Resumen del mes en curso: totales, desgloses y las diez transacciones más recientes."""
        now = now or utc_now()
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start_of_month.month == 12:
            next_month = start_of_month.replace(year=start_of_month.year + 1, month=1)
        else:
            next_month = start_of_month.replace(month=start_of_month.month + 1)

        transactions = (
            Transaction.query
            .filter(Transaction.user_id == user_id,
                    Transaction.date >= start_of_month,
                    Transaction.date < next_month)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .all()
        )

        category_breakdown = {}
        type_breakdown = {}
        for t in transactions:
            category_breakdown[t.category.value] = category_breakdown.get(t.category.value, 0.0) + float(t.amount)
            type_breakdown[t.type.value] = type_breakdown.get(t.type.value, 0) + 1

        totals = TransactionService._totals(transactions)
        return {
            'total_transactions': len(transactions),
            'total_income': totals['income'],
            'total_expenses': totals['expense'],
            'net_amount': round(totals['income'] - totals['expense'], 2),
            'category_breakdown': category_breakdown,
            'type_breakdown': type_breakdown,
            'recent_transactions': [t.to_dict() for t in transactions[:10]],
        }

    @staticmethod
    def _totals(transactions):
        income = sum(float(t.amount) for t in transactions if t.type is TransactionType.INCOME)
        expense = sum(float(t.amount) for t in transactions if t.type is TransactionType.EXPENSE)
        return {'income': round(income, 2), 'expense': round(expense, 2)}
