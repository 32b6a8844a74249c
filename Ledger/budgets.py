"""Gestor de periodos de presupuesto.

Un presupuesto cubre el intervalo semiabierto ``[start_date, end_date)`` de una
categoría. Para un mismo usuario y categoría los intervalos nunca se solapan.
"""
import logging
from decimal import Decimal

from Ledger.balance import to_amount
from Ledger.constants import Category, Frequency, TransactionType
from Ledger.errors import NotFoundError, StateConflictError, ValidationError
from Ledger.models import db, Budget, Transaction, User
from Ledger.outcomes import service_outcome
from Ledger.periods import add_period, as_date, as_datetime, periods_overlap, utc_now

logger = logging.getLogger(__name__)


class BudgetService:
    """Servicio de presupuestos: creación, gasto acumulado y renovación automática."""

    # --- Consultas internas ---

    @staticmethod
    def get_owned_budget(budget_id, user_id):
        budget = db.session.get(Budget, budget_id)
        if budget is None or budget.user_id != user_id:
            raise NotFoundError("Presupuesto no encontrado o no pertenece al usuario.")
        return budget

    @staticmethod
    def find_overlapping(user_id, category, start_date, end_date, exclude_id=None):
        """Presupuestos del usuario y categoría cuyo periodo interseca [start_date, end_date)."""
        query = Budget.query.filter(Budget.user_id == user_id, Budget.category == category)
        if exclude_id is not None:
            query = query.filter(Budget.id != exclude_id)
        if end_date is not None:
            query = query.filter(Budget.start_date < end_date)
        query = query.filter(db.or_(Budget.end_date.is_(None), Budget.end_date > start_date))
        # Se repite la prueba en Python para que la regla quede en un solo lugar
        return [b for b in query.all() if periods_overlap(b.start_date, b.end_date, start_date, end_date)]

    @staticmethod
    def ensure_no_overlap(user_id, category, start_date, end_date, exclude_id=None):
        overlapping = BudgetService.find_overlapping(user_id, category, start_date, end_date, exclude_id)
        if overlapping:
            other = overlapping[0]
            raise ValidationError(
                f"Ya existe un presupuesto de {category.value} que se solapa con el periodo "
                f"({other.start_date.isoformat()} - "
                f"{other.end_date.isoformat() if other.end_date else 'sin fin'})."
            )

    @staticmethod
    def find_budget_for(user_id, category, day):
        """Presupuesto cuyo periodo contiene ``day`` para esa categoría, si existe."""
        day = as_date(day)
        return Budget.query.filter(
            Budget.user_id == user_id,
            Budget.category == category,
            Budget.start_date <= day,
            db.or_(Budget.end_date.is_(None), Budget.end_date > day),
        ).first()

    # --- Gasto acumulado (sin commit: lo hace la unidad de trabajo del llamador) ---

    @staticmethod
    def _resolve(budget):
        if isinstance(budget, Budget):
            return budget
        resolved = db.session.get(Budget, budget)
        if resolved is None:
            raise NotFoundError("Presupuesto no encontrado.")
        return resolved

    @staticmethod
    def record_spend(budget, amount):
        budget = BudgetService._resolve(budget)
        amount = Decimal(amount)
        if amount < 0:
            raise ValidationError("El gasto a registrar no puede ser negativo.")
        budget.spent_amount = (budget.spent_amount or Decimal('0.00')) + amount
        return budget

    @staticmethod
    def reverse_spend(budget, amount):
        budget = BudgetService._resolve(budget)
        remaining = (budget.spent_amount or Decimal('0.00')) - Decimal(amount)
        if remaining < 0:
            # El gasto acumulado nunca queda negativo
            logger.warning(
                "Reversión de %s deja negativo el presupuesto %s (gastado %s); se ajusta a 0",
                amount, budget.id, budget.spent_amount,
            )
            remaining = Decimal('0.00')
        budget.spent_amount = remaining
        return budget

    @staticmethod
    def link_expense(transaction):
        """Vincula un gasto al presupuesto de su categoría y fecha y suma el gasto."""
        transaction.budget_id = None
        if transaction.type is not TransactionType.EXPENSE:
            return None
        budget = BudgetService.find_budget_for(transaction.user_id, transaction.category, transaction.date)
        if budget is None:
            logger.info(
                "Sin presupuesto para el gasto. Usuario: %s, Categoría: %s, Fecha: %s",
                transaction.user_id, transaction.category.value, transaction.date,
            )
            return None
        BudgetService.record_spend(budget, transaction.amount)
        transaction.budget_id = budget.id
        logger.info(
            "Transacción vinculada al presupuesto %s (categoría %s, monto %s)",
            budget.id, transaction.category.value, transaction.amount,
        )
        return budget

    @staticmethod
    def unlink_expense(transaction):
        """Quita el efecto de una transacción sobre su presupuesto vinculado."""
        if transaction.budget_id is None:
            return None
        budget = db.session.get(Budget, transaction.budget_id)
        if budget is not None:
            BudgetService.reverse_spend(budget, transaction.amount)
        transaction.budget_id = None
        return budget

    @staticmethod
    def relink_period(budget):
        """Recalcula qué gastos caen en el periodo del presupuesto tras cambiar su fin."""
        for transaction in Transaction.query.filter_by(budget_id=budget.id).all():
            BudgetService.unlink_expense(transaction)
        db.session.flush()

        query = Transaction.query.filter(
            Transaction.user_id == budget.user_id,
            Transaction.category == budget.category,
            Transaction.type == TransactionType.EXPENSE,
            Transaction.budget_id.is_(None),
            Transaction.date >= as_datetime(budget.start_date),
        )
        if budget.end_date is not None:
            query = query.filter(Transaction.date < as_datetime(budget.end_date))
        for transaction in query.all():
            BudgetService.link_expense(transaction)

    # --- Operaciones públicas ---

    @staticmethod
    @service_outcome("crear presupuesto", success_status=201)
    def create_budget(user_id, category, planned_amount, start_date, frequency=Frequency.MONTHLY,
                      auto_renewal=False, reminder=False):
        """Crea un presupuesto con fin calculado; rechaza periodos solapados."""
        if db.session.get(User, user_id) is None:
            raise NotFoundError("Usuario no encontrado.")
        category = Category.parse_spending(category)
        planned = to_amount(planned_amount, "El monto planificado")
        frequency = Frequency.parse(frequency, 'Frecuencia')
        start = as_date(start_date)
        end = add_period(start, frequency)

        BudgetService.ensure_no_overlap(user_id, category, start, end)

        budget = Budget(
            user_id=user_id,
            category=category,
            planned_amount=planned,
            spent_amount=Decimal('0.00'),
            reminder=bool(reminder),
            start_date=start,
            end_date=end,
            renewal_frequency=frequency,
            auto_renewal_enabled=bool(auto_renewal),
            renewal_count=0,
        )
        db.session.add(budget)
        db.session.flush()
        logger.info("Presupuesto %s creado para usuario %s (%s, %s - %s)",
                    budget.id, user_id, category.value, start, end)
        return budget

    @staticmethod
    @service_outcome("actualizar presupuesto")
    def update_budget(budget_id, user_id, planned_amount=None, reminder=None, frequency=None,
                      auto_renewal=None, category=None, start_date=None):
        """Actualiza monto, recordatorio, frecuencia y renovación.

        La categoría y la fecha de inicio son inmutables: enviarlas con un valor
        distinto es un error de validación.
        """
        budget = BudgetService.get_owned_budget(budget_id, user_id)

        if category is not None and Category.parse(category, 'Categoría') is not budget.category:
            raise ValidationError("La categoría de un presupuesto no se puede modificar.")
        if start_date is not None and as_date(start_date) != budget.start_date:
            raise ValidationError("La fecha de inicio de un presupuesto no se puede modificar.")

        if planned_amount is not None:
            budget.planned_amount = to_amount(planned_amount, "El monto planificado")
        if reminder is not None:
            budget.reminder = bool(reminder)
        if auto_renewal is not None:
            budget.auto_renewal_enabled = bool(auto_renewal)
        if frequency is not None:
            frequency = Frequency.parse(frequency, 'Frecuencia')
            new_end = add_period(budget.start_date, frequency)
            BudgetService.ensure_no_overlap(user_id, budget.category, budget.start_date, new_end,
                                            exclude_id=budget.id)
            budget.renewal_frequency = frequency
            budget.end_date = new_end
            BudgetService.relink_period(budget)

        logger.info("Presupuesto %s actualizado por usuario %s", budget.id, user_id)
        return budget

    @staticmethod
    @service_outcome("eliminar presupuesto")
    def delete_budget(budget_id, user_id):
        budget = BudgetService.get_owned_budget(budget_id, user_id)
        # Las transacciones sobreviven al presupuesto; solo pierden el vínculo
        Transaction.query.filter_by(budget_id=budget.id).update({'budget_id': None})
        db.session.delete(budget)
        logger.info("Presupuesto %s eliminado por usuario %s", budget_id, user_id)
        return {'id': budget_id}

    @staticmethod
    @service_outcome("consultar presupuesto")
    def get_budget(budget_id, user_id):
        return BudgetService.get_owned_budget(budget_id, user_id)

    @staticmethod
    def get_budgets(user_id):
        """Presupuestos del usuario ordenados por categoría y fecha de inicio."""
        budgets = Budget.query.filter_by(user_id=user_id).order_by(Budget.start_date.asc()).all()
        return sorted(budgets, key=lambda b: (b.category.value, b.start_date))

    @staticmethod
    @service_outcome("cambiar renovación automática")
    def toggle_auto_renewal(budget_id, user_id, enabled):
        budget = BudgetService.get_owned_budget(budget_id, user_id)
        budget.auto_renewal_enabled = bool(enabled)
        logger.info("Renovación automática del presupuesto %s: %s", budget.id, budget.auto_renewal_enabled)
        return budget

    @staticmethod
    def get_categories_with_active_budgets(user_id, today=None):
        today = as_date(today) if today else utc_now().date()
        budgets = Budget.query.filter(
            Budget.user_id == user_id,
            Budget.start_date <= today,
            db.or_(Budget.end_date.is_(None), Budget.end_date > today),
        ).all()
        return sorted({b.category.value for b in budgets})

    @staticmethod
    def get_budget_summary(user_id):
        """Totales planificado/gastado y conteo por estado de todos los presupuestos."""
        budgets = Budget.query.filter_by(user_id=user_id).all()
        total_planned = sum((b.planned_amount for b in budgets), Decimal('0.00'))
        total_spent = sum((b.spent_amount for b in budgets), Decimal('0.00'))
        progress = float(total_spent) / float(total_planned) * 100 if total_planned > 0 else 0.0
        return {
            'total_budgets': len(budgets),
            'total_planned_amount': float(total_planned),
            'total_spent_amount': float(total_spent),
            'total_remaining_amount': float(total_planned - total_spent),
            'overall_progress_percent': round(progress, 2),
            'on_track_budgets': sum(1 for b in budgets if b.status == 'On Track'),
            'warning_budgets': sum(1 for b in budgets if b.status == 'Warning'),
            'exceeded_budgets': sum(1 for b in budgets if b.status == 'Exceeded'),
        }

    # --- Renovación automática ---

    @staticmethod
    def _renewal_problem(budget):
        """Motivo por el que un presupuesto no puede renovarse, o None."""
        if budget.category is None:
            return "sin categoría"
        if budget.planned_amount is None or budget.planned_amount <= 0:
            return "monto planificado no positivo"
        if budget.end_date is None:
            return "sin fecha de fin"
        if not budget.auto_renewal_enabled:
            return "renovación automática desactivada"
        if budget.user_id is None or db.session.get(User, budget.user_id) is None:
            return "usuario inexistente"
        return None

    @staticmethod
    def renew_budget(budget, now):
        """Crea el periodo sucesor y desactiva la renovación del presupuesto vencido.

        No hace commit. Lanza ``StateConflictError`` si el presupuesto no es
        renovable o si el periodo sucesor se solapa con otro existente.
        """
        problem = BudgetService._renewal_problem(budget)
        if problem:
            raise StateConflictError(f"Presupuesto {budget.id} no renovable: {problem}.")

        new_start = budget.end_date
        new_end = add_period(new_start, budget.renewal_frequency)
        if BudgetService.find_overlapping(budget.user_id, budget.category, new_start, new_end,
                                          exclude_id=budget.id):
            raise StateConflictError(
                f"Presupuesto {budget.id} no renovable: el periodo {new_start} - {new_end} ya está ocupado."
            )

        successor = Budget(
            user_id=budget.user_id,
            category=budget.category,
            planned_amount=budget.planned_amount,
            spent_amount=Decimal('0.00'),
            reminder=budget.reminder,
            start_date=new_start,
            end_date=new_end,
            renewal_frequency=budget.renewal_frequency,
            auto_renewal_enabled=True,
            renewal_count=budget.renewal_count + 1,
            last_renewal_date=now,
        )
        db.session.add(successor)
        # Evita que el mismo presupuesto genere una segunda cadena
        budget.auto_renewal_enabled = False
        budget.last_renewal_date = now
        db.session.flush()
        return successor

    @staticmethod
    def run_auto_renewal_sweep(now=None):
        """Renueva los presupuestos vencidos con renovación automática.

        Cada presupuesto es su propia unidad atómica: un fallo se revierte, se
        registra y no afecta a los demás. Devuelve un resumen con contadores.
        """
        now = now or utc_now()
        today = now.date()
        due = Budget.query.filter(
            Budget.auto_renewal_enabled.is_(True),
            Budget.end_date.isnot(None),
            Budget.end_date <= today,
        ).order_by(Budget.id).all()

        result = {'found': len(due), 'renewed': 0, 'skipped': 0, 'failed': 0}
        if not due:
            logger.debug("No hay presupuestos para renovar a las %s", now)
            return result

        logger.info("Se encontraron %s presupuestos para renovar", len(due))
        for budget_id, user_id in [(b.id, b.user_id) for b in due]:
            try:
                budget = db.session.get(Budget, budget_id)
                successor = BudgetService.renew_budget(budget, now)
                db.session.commit()
                result['renewed'] += 1
                logger.info("Presupuesto %s renovado -> %s para usuario %s", budget_id, successor.id, user_id)
            except StateConflictError as e:
                db.session.rollback()
                result['skipped'] += 1
                logger.warning("Renovación omitida (usuario %s): %s", user_id, e.message)
            except Exception:
                db.session.rollback()
                result['failed'] += 1
                logger.exception("Fallo al renovar el presupuesto %s del usuario %s; se revierte", budget_id, user_id)

        logger.info("Barrido de renovación completado: %s", result)
        return result

    @staticmethod
    @service_outcome("renovar presupuesto", success_status=201)
    def renew_budget_now(budget_id, now=None):
        """Renueva un presupuesto concreto de inmediato (prueba operativa)."""
        budget = db.session.get(Budget, budget_id)
        if budget is None:
            raise NotFoundError("Presupuesto no encontrado.")
        return BudgetService.renew_budget(budget, now or utc_now())
