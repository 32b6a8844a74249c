from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy

from Ledger.constants import (
    BUDGET_WARNING_RATIO, Category, Frequency, GoalPriority, GoalStatus,
    RecurringStatus, TransactionType,
)
from Ledger.periods import utc_now

# Inicializa SQLAlchemy. Se inicializará con la app en Main.py
db = SQLAlchemy()

MONEY = db.Numeric(12, 2)


def _label_enum(enum_cls):
    # Se persiste la etiqueta ('Food', 'Active'...) y no el nombre del miembro
    return db.Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


def _money(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    """Titular del libro; el saldo solo lo modifica BalanceService."""
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    initial_balance = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    balance_amount = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    transactions = db.relationship('Transaction', backref='owner', lazy=True)
    budgets = db.relationship('Budget', backref='owner', lazy=True)
    goals = db.relationship('Goal', backref='owner', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'initial_balance': _money(self.initial_balance),
            'balance_amount': _money(self.balance_amount),
        }


class Budget(db.Model):
    """Periodo semiabierto [start_date, end_date) de gasto planificado en una categoría."""
    __tablename__ = 'budgets'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    category = db.Column(_label_enum(Category), nullable=False)
    planned_amount = db.Column(MONEY, nullable=False)
    spent_amount = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    reminder = db.Column(db.Boolean, default=False, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    renewal_frequency = db.Column(_label_enum(Frequency), default=Frequency.MONTHLY, nullable=False)
    auto_renewal_enabled = db.Column(db.Boolean, default=False, nullable=False)
    renewal_count = db.Column(db.Integer, default=0, nullable=False)
    last_renewal_date = db.Column(db.DateTime, nullable=True)

    transactions = db.relationship('Transaction', backref='budget', lazy=True)

    @property
    def remaining_amount(self):
        return self.planned_amount - self.spent_amount

    @property
    def progress_percent(self):
        if not self.planned_amount or self.planned_amount <= 0:
            return 0.0
        return round(float(self.spent_amount) / float(self.planned_amount) * 100, 2)

    @property
    def status(self):
        if self.spent_amount >= self.planned_amount:
            return 'Exceeded'
        if float(self.spent_amount) >= float(self.planned_amount) * BUDGET_WARNING_RATIO:
            return 'Warning'
        return 'On Track'

    def contains(self, day):
        return self.start_date <= day and (self.end_date is None or day < self.end_date)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'category': self.category.value,
            'planned_amount': _money(self.planned_amount),
            'spent_amount': _money(self.spent_amount),
            'remaining_amount': _money(self.remaining_amount),
            'progress_percent': self.progress_percent,
            'status': self.status,
            'reminder': self.reminder,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'renewal_frequency': self.renewal_frequency.value,
            'auto_renewal_enabled': self.auto_renewal_enabled,
            'renewal_count': self.renewal_count,
            'last_renewal_date': _iso(self.last_renewal_date),
        }


class RecurringTransaction(db.Model):
    """Plantilla de transacción más su estado de programación.

    No hereda de Transaction: las transacciones generadas son filas
    independientes que apuntan a la plantilla por clave foránea.
    """
    __tablename__ = 'recurring_transactions'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    amount = db.Column(MONEY, nullable=False)
    category = db.Column(_label_enum(Category), nullable=False)
    type = db.Column(_label_enum(TransactionType), nullable=False)
    frequency = db.Column(_label_enum(Frequency), default=Frequency.MONTHLY, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    next_occurrence_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(_label_enum(RecurringStatus), default=RecurringStatus.ACTIVE, nullable=False, index=True)
    occurrence_count = db.Column(db.Integer, default=0, nullable=False)
    last_created_date = db.Column(db.DateTime, nullable=True)
    created_date = db.Column(db.DateTime, default=utc_now, nullable=False)
    last_modified_date = db.Column(db.DateTime, default=utc_now, nullable=False)

    generated_transactions = db.relationship('Transaction', backref='recurring_transaction', lazy=True)

    @property
    def is_active(self):
        return self.status is RecurringStatus.ACTIVE

    def can_be_processed(self, now):
        """Activa, vencida, dentro de su fecha fin y sin ocurrencia creada hoy."""
        today = now.date()
        return (
            self.status is RecurringStatus.ACTIVE
            and self.next_occurrence_date <= today
            and (self.end_date is None or self.end_date > today)
            and (self.last_created_date is None or self.last_created_date.date() < today)
        )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'amount': _money(self.amount),
            'category': self.category.value,
            'type': self.type.value,
            'frequency': self.frequency.value,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'next_occurrence_date': _iso(self.next_occurrence_date),
            'status': self.status.value,
            'occurrence_count': self.occurrence_count,
            'last_created_date': _iso(self.last_created_date),
            'created_date': _iso(self.created_date),
            'last_modified_date': _iso(self.last_modified_date),
        }


class Transaction(db.Model):
    """Modelo para registrar Ingresos o Gastos."""
    __tablename__ = 'transactions'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    amount = db.Column(MONEY, nullable=False)
    category = db.Column(_label_enum(Category), nullable=False)
    type = db.Column(_label_enum(TransactionType), nullable=False)
    date = db.Column(db.DateTime, default=utc_now, nullable=False)

    budget_id = db.Column(db.Integer, db.ForeignKey('budgets.id'), nullable=True)
    is_recurring_generated = db.Column(db.Boolean, default=False, nullable=False)
    recurring_transaction_id = db.Column(
        db.Integer, db.ForeignKey('recurring_transactions.id'), nullable=True
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'amount': _money(self.amount),
            'category': self.category.value,
            'type': self.type.value,
            'date': _iso(self.date),
            'budget_id': self.budget_id,
            'is_recurring_generated': self.is_recurring_generated,
            'recurring_transaction_id': self.recurring_transaction_id,
        }


class Goal(db.Model):
    """Meta de ahorro; current_amount es la reserva apartada del saldo."""
    __tablename__ = 'goals'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    target_amount = db.Column(MONEY, nullable=False)
    current_amount = db.Column(MONEY, default=Decimal('0.00'), nullable=False)
    target_date = db.Column(db.Date, nullable=False)
    priority = db.Column(_label_enum(GoalPriority), default=GoalPriority.MEDIUM, nullable=False)
    status = db.Column(_label_enum(GoalStatus), default=GoalStatus.ACTIVE, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    reminder = db.Column(db.Boolean, default=False, nullable=False)
    created_date = db.Column(db.DateTime, default=utc_now, nullable=False)
    last_updated_date = db.Column(db.DateTime, default=utc_now, nullable=False)

    @property
    def progress_percent(self):
        if not self.target_amount or self.target_amount <= 0:
            return 0.0
        progress = float(self.current_amount) / float(self.target_amount) * 100
        return round(min(progress, 100.0), 2)

    @property
    def remaining_amount(self):
        return max(self.target_amount - self.current_amount, Decimal('0.00'))

    def is_overdue(self, today):
        return today > self.target_date and self.current_amount < self.target_amount

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'target_amount': _money(self.target_amount),
            'current_amount': _money(self.current_amount),
            'remaining_amount': _money(self.remaining_amount),
            'progress_percent': self.progress_percent,
            'target_date': _iso(self.target_date),
            'priority': self.priority.value,
            'status': self.status.value,
            'is_active': self.is_active,
            'reminder': self.reminder,
        }


class DailySnapshot(db.Model):
    """Captura diaria de saldo y reserva total para gráficos históricos."""
    __tablename__ = 'daily_snapshots'
    __table_args__ = (db.UniqueConstraint('user_id', 'date', name='uq_snapshot_user_date'),)
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    balance_amount = db.Column(MONEY, nullable=False)
    reserve_amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    def to_dict(self):
        return {
            'date': _iso(self.date),
            'balance_amount': _money(self.balance_amount),
            'reserve_amount': _money(self.reserve_amount),
        }
