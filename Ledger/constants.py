from enum import Enum

from Ledger.errors import ValidationError


class _LabelEnum(str, Enum):
    """Enum cuyo valor es la etiqueta persistida; se parsea sin distinguir mayúsculas."""

    @classmethod
    def parse(cls, value, field_name=None):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        allowed = ', '.join(member.value for member in cls)
        label = field_name or cls.__name__
        raise ValidationError(f"{label} inválido. Valores permitidos: {allowed}.")

    def __str__(self):
        return self.value


class Category(_LabelEnum):
    FOOD = 'Food'
    GROCERY = 'Grocery'
    RENT = 'Rent'
    EDUCATION = 'Education'
    HEALTH = 'Health'
    ENTERTAINMENT = 'Entertainment'
    TRANSPORTATION = 'Transportation'
    MISCELLANEOUS = 'Miscellaneous'
    # Categoría por defecto de los ingresos; no admite presupuestos
    INCOME = 'Income'

    @classmethod
    def parse_spending(cls, value):
        """Parsea una categoría de gasto (las únicas que admiten presupuesto)."""
        category = cls.parse(value, 'Categoría')
        if category is cls.INCOME:
            allowed = ', '.join(c.value for c in cls.spending())
            raise ValidationError(f"Categoría inválida. Valores permitidos: {allowed}.")
        return category

    @classmethod
    def spending(cls):
        return [c for c in cls if c is not cls.INCOME]


class TransactionType(_LabelEnum):
    INCOME = 'Income'
    EXPENSE = 'Expense'


class Frequency(_LabelEnum):
    WEEKLY = 'Weekly'
    MONTHLY = 'Monthly'
    YEARLY = 'Yearly'


class RecurringStatus(_LabelEnum):
    ACTIVE = 'Active'
    PAUSED = 'Paused'
    CANCELLED = 'Cancelled'


class GoalStatus(_LabelEnum):
    ACTIVE = 'Active'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'


class GoalPriority(_LabelEnum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


# Umbral a partir del cual un presupuesto pasa a estado "Warning"
BUDGET_WARNING_RATIO = 0.8
