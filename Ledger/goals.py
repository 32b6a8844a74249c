"""Gestor de reservas de metas.

Todo movimiento entre el saldo y la reserva de una meta debita un lado y
acredita el otro dentro de la misma unidad atómica.
"""
import logging
from decimal import Decimal

from Ledger.balance import BalanceService, to_amount
from Ledger.budgets import BudgetService
from Ledger.constants import Category, GoalPriority, GoalStatus, TransactionType
from Ledger.errors import InsufficientFundsError, NotFoundError, StateConflictError, ValidationError
from Ledger.models import db, Goal, Transaction, User
from Ledger.outcomes import service_outcome
from Ledger.periods import as_date, utc_now
from Ledger.transactions import clean_title

logger = logging.getLogger(__name__)

_PRIORITY_RANK = {GoalPriority.HIGH: 0, GoalPriority.MEDIUM: 1, GoalPriority.LOW: 2}


def _goal_title(title):
    title = clean_title(title)
    if len(title) < 2:
        raise ValidationError("El título debe tener entre 2 y 100 caracteres.")
    return title


class GoalService:
    """Servicio de metas: alta, reservas y conversión de la reserva en gasto."""

    @staticmethod
    def get_owned_goal(goal_id, user_id):
        goal = db.session.get(Goal, goal_id)
        if goal is None:
            raise NotFoundError("Meta no encontrada.")
        if goal.user_id != user_id:
            logger.warning("Usuario %s intentó acceder a la meta %s del usuario %s", user_id, goal_id, goal.user_id)
            raise NotFoundError("Meta no encontrada.")
        return goal

    @staticmethod
    @service_outcome("crear meta", success_status=201)
    def create_goal(user_id, title, target_amount, target_date, priority=GoalPriority.MEDIUM,
                    description=None, reminder=False, now=None):
        """Crea una nueva meta de ahorro con la reserva en cero."""
        if db.session.get(User, user_id) is None:
            raise NotFoundError("Usuario no encontrado.")
        now = now or utc_now()
        goal = Goal(
            user_id=user_id,
            title=_goal_title(title),
            description=description,
            target_amount=to_amount(target_amount, "El monto objetivo"),
            current_amount=Decimal('0.00'),
            target_date=as_date(target_date),
            priority=GoalPriority.parse(priority, 'Prioridad'),
            status=GoalStatus.ACTIVE,
            is_active=True,
            reminder=bool(reminder),
            created_date=now,
            last_updated_date=now,
        )
        db.session.add(goal)
        db.session.flush()
        logger.info("Meta %s creada para usuario %s (objetivo %s)", goal.id, user_id, goal.target_amount)
        return goal

    @staticmethod
    @service_outcome("actualizar meta")
    def update_goal(goal_id, user_id, title=None, description=None, target_amount=None,
                    target_date=None, priority=None, reminder=None):
        """Edita los datos descriptivos; la reserva solo cambia con fondeos y retiros."""
        goal = GoalService.get_owned_goal(goal_id, user_id)
        if title is not None:
            goal.title = _goal_title(title)
        if description is not None:
            goal.description = description
        if target_amount is not None:
            goal.target_amount = to_amount(target_amount, "El monto objetivo")
        if target_date is not None:
            goal.target_date = as_date(target_date)
        if priority is not None:
            goal.priority = GoalPriority.parse(priority, 'Prioridad')
        if reminder is not None:
            goal.reminder = bool(reminder)
        goal.last_updated_date = utc_now()
        return goal

    @staticmethod
    @service_outcome("eliminar meta")
    def delete_goal(goal_id, user_id):
        goal = GoalService.get_owned_goal(goal_id, user_id)
        if goal.current_amount > 0:
            raise StateConflictError("La meta aún tiene fondos reservados; retírelos antes de eliminarla.")
        db.session.delete(goal)
        logger.info("Meta %s eliminada por usuario %s", goal_id, user_id)
        return {'id': goal_id}

    @staticmethod
    def get_user_goals(user_id):
        """Metas del usuario por prioridad (alta primero) y fecha objetivo."""
        goals = Goal.query.filter_by(user_id=user_id).all()
        return sorted(goals, key=lambda g: (_PRIORITY_RANK[g.priority], g.target_date, g.id))

    @staticmethod
    @service_outcome("aportar a meta")
    def add_funds(goal_id, amount, user_id):
        """Mueve ``amount`` del saldo del usuario a la reserva de la meta."""
        goal = GoalService.get_owned_goal(goal_id, user_id)
        amount = to_amount(amount, "La contribución")
        if goal.status is not GoalStatus.ACTIVE:
            raise StateConflictError(f"La meta está {goal.status.value}; no admite nuevos aportes.")
        user = BalanceService.load_user(user_id)

        BalanceService.transfer_to_reserve(user, amount)
        goal.current_amount += amount
        goal.last_updated_date = utc_now()
        logger.info("Aporte de %s a la meta %s (usuario %s)", amount, goal.id, user_id)
        return goal

    @staticmethod
    @service_outcome("retirar de meta")
    def withdraw_funds(goal_id, amount, user_id):
        """Devuelve ``amount`` de la reserva de la meta al saldo del usuario."""
        goal = GoalService.get_owned_goal(goal_id, user_id)
        amount = to_amount(amount, "El retiro")
        if goal.current_amount < amount:
            raise InsufficientFundsError("Fondos insuficientes en la meta para retirar.")
        user = BalanceService.load_user(user_id)

        goal.current_amount -= amount
        goal.last_updated_date = utc_now()
        BalanceService.transfer_from_reserve(user, amount)
        logger.info("Retiro de %s de la meta %s (usuario %s)", amount, goal.id, user_id)
        return goal

    @staticmethod
    @service_outcome("convertir meta en gasto", success_status=201)
    def convert_to_expense(goal_id, amount, title, category, user_id, description=None,
                           mark_completed=True, now=None):
        """Gasta la reserva de una meta registrando un gasto.

        El gasto no vuelve a debitar el saldo: el dinero salió de circulación
        al reservarlo. La meta queda completada e inactiva cuando
        ``mark_completed`` es verdadero o la reserva llega a cero.
        """
        goal = GoalService.get_owned_goal(goal_id, user_id)
        amount = to_amount(amount)
        if goal.status is not GoalStatus.ACTIVE:
            raise StateConflictError(f"La meta está {goal.status.value}; no se puede convertir.")
        if goal.current_amount < amount:
            raise InsufficientFundsError("Fondos insuficientes en la meta para convertir en gasto.")
        category = Category.parse_spending(category)
        now = now or utc_now()

        transaction = Transaction(
            user_id=user_id,
            title=clean_title(title),
            description=description,
            amount=amount,
            category=category,
            type=TransactionType.EXPENSE,
            date=now,
        )
        db.session.add(transaction)
        BudgetService.link_expense(transaction)

        goal.current_amount -= amount
        goal.last_updated_date = now
        if mark_completed or goal.current_amount == 0:
            goal.status = GoalStatus.COMPLETED
            goal.is_active = False
        db.session.flush()
        logger.info("Meta %s convertida en gasto %s por %s (usuario %s)", goal.id, transaction.id, amount, user_id)
        return {'goal': goal.to_dict(), 'transaction': transaction.to_dict()}

    @staticmethod
    def get_goal_summary(user_id, today=None):
        today = as_date(today) if today else utc_now().date()
        goals = GoalService.get_user_goals(user_id)
        total_target = sum((g.target_amount for g in goals), Decimal('0.00'))
        total_current = sum((g.current_amount for g in goals), Decimal('0.00'))

        monthly_required = 0.0
        weekly_required = 0.0
        for g in goals:
            days_left = (g.target_date - today).days
            remaining = float(g.remaining_amount)
            monthly_required += remaining / max(days_left / 30.0, 1)
            weekly_required += remaining / max(days_left / 7.0, 1)

        priority_breakdown = {}
        status_breakdown = {}
        for g in goals:
            priority_breakdown[g.priority.value] = priority_breakdown.get(g.priority.value, 0) + 1
            status_breakdown[g.status.value] = status_breakdown.get(g.status.value, 0) + 1

        return {
            'total_goals': len(goals),
            'active_goals': sum(1 for g in goals if g.is_active and g.status is GoalStatus.ACTIVE),
            'completed_goals': sum(
                1 for g in goals if g.status is GoalStatus.COMPLETED or g.current_amount >= g.target_amount
            ),
            'overdue_goals': sum(1 for g in goals if g.is_overdue(today)),
            'total_target_amount': float(total_target),
            'total_current_amount': float(total_current),
            'total_remaining_amount': float(sum((g.remaining_amount for g in goals), Decimal('0.00'))),
            'overall_progress_percent': round(float(total_current) / float(total_target) * 100, 2)
            if total_target > 0 else 0.0,
            'total_monthly_required': round(monthly_required, 2),
            'total_weekly_required': round(weekly_required, 2),
            'priority_breakdown': priority_breakdown,
            'status_breakdown': status_breakdown,
        }
