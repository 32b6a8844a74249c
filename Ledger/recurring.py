"""Programador de transacciones recurrentes.

Máquina de estados de una plantilla::

    Active <-> Paused
    Active/Paused -> Cancelled   (terminal, manual o al superar la fecha de fin)

La próxima ocurrencia nunca se calcula sumando un periodo a "ahora" ni a la
ocurrencia anterior: siempre es ``start_date`` avanzado ``occurrence_count + 1``
periodos. Así las pausas o los barridos perdidos no acumulan deriva.
"""
import logging
from datetime import datetime
from decimal import Decimal

from Ledger.balance import BalanceService, to_amount
from Ledger.budgets import BudgetService
from Ledger.constants import Frequency, RecurringStatus, TransactionType
from Ledger.errors import (
    NotFoundError, StateConflictError, ValidationError,
)
from Ledger.models import db, RecurringTransaction, Transaction, User
from Ledger.outcomes import service_outcome
from Ledger.periods import add_period, advance, as_date, utc_now
from Ledger.transactions import clean_title, resolve_category

logger = logging.getLogger(__name__)

# Transiciones manuales permitidas: estado destino -> estados de origen válidos
_ALLOWED_TRANSITIONS = {
    RecurringStatus.PAUSED: {RecurringStatus.ACTIVE},
    RecurringStatus.ACTIVE: {RecurringStatus.PAUSED},
    RecurringStatus.CANCELLED: {RecurringStatus.ACTIVE, RecurringStatus.PAUSED},
}


class RecurringTransactionService:
    """Ciclo de vida de las plantillas y materialización de sus ocurrencias."""

    # --- Calendario ---

    @staticmethod
    def calculate_next_occurrence(current_date, frequency):
        """Semana = +7 días, mes/año de calendario."""
        return add_period(current_date, frequency)

    @staticmethod
    def next_occurrence_for(template):
        """Próxima ocurrencia derivada solo de la fecha de inicio y del contador."""
        return advance(template.start_date, template.frequency, template.occurrence_count + 1)

    # --- Consultas ---

    @staticmethod
    def get_owned_template(template_id, user_id):
        template = db.session.get(RecurringTransaction, template_id)
        if template is None or template.user_id != user_id:
            raise NotFoundError("Transacción recurrente no encontrada o no pertenece al usuario.")
        return template

    @staticmethod
    def get_templates(user_id, status=None, frequency=None):
        query = RecurringTransaction.query.filter_by(user_id=user_id)
        if status is not None:
            query = query.filter(RecurringTransaction.status == RecurringStatus.parse(status, 'Estado'))
        if frequency is not None:
            query = query.filter(RecurringTransaction.frequency == Frequency.parse(frequency, 'Frecuencia'))
        return query.order_by(RecurringTransaction.created_date.desc(), RecurringTransaction.id.desc()).all()

    @staticmethod
    def get_due_templates(now):
        """Plantillas que cumplen ``can_be_processed`` en ``now``."""
        today = now.date()
        start_of_today = datetime(today.year, today.month, today.day)
        return (
            RecurringTransaction.query
            .filter(
                RecurringTransaction.status == RecurringStatus.ACTIVE,
                RecurringTransaction.next_occurrence_date <= today,
                db.or_(RecurringTransaction.end_date.is_(None), RecurringTransaction.end_date > today),
                db.or_(RecurringTransaction.last_created_date.is_(None),
                       RecurringTransaction.last_created_date < start_of_today),
            )
            .order_by(RecurringTransaction.id)
            .all()
        )

    @staticmethod
    def get_summary(user_id):
        templates = RecurringTransaction.query.filter_by(user_id=user_id).all()
        active = [t for t in templates if t.status is RecurringStatus.ACTIVE]

        def total_for(frequency):
            return float(sum((t.amount for t in active if t.frequency is frequency), Decimal('0.00')))

        category_breakdown = {}
        type_breakdown = {}
        for t in active:
            category_breakdown[t.category.value] = category_breakdown.get(t.category.value, 0.0) + float(t.amount)
            type_breakdown[t.type.value] = type_breakdown.get(t.type.value, 0) + 1

        recent = sorted(templates, key=lambda t: (t.created_date, t.id), reverse=True)[:5]
        return {
            'total_recurring_transactions': len(templates),
            'active_recurring_transactions': len(active),
            'paused_recurring_transactions': sum(1 for t in templates if t.status is RecurringStatus.PAUSED),
            'cancelled_recurring_transactions': sum(1 for t in templates if t.status is RecurringStatus.CANCELLED),
            'total_weekly_amount': total_for(Frequency.WEEKLY),
            'total_monthly_amount': total_for(Frequency.MONTHLY),
            'total_yearly_amount': total_for(Frequency.YEARLY),
            'category_breakdown': category_breakdown,
            'type_breakdown': type_breakdown,
            'recent_recurring_transactions': [t.to_dict() for t in recent],
        }

    # --- Alta, edición y estado ---

    @staticmethod
    @service_outcome("crear transacción recurrente", success_status=201)
    def create_template(user_id, title, amount, type, frequency, start_date, category=None,
                        description=None, end_date=None, now=None):
        """Crea una plantilla activa cuya primera ocurrencia es un periodo después del inicio."""
        if db.session.get(User, user_id) is None:
            raise NotFoundError("Usuario no encontrado.")
        now = now or utc_now()
        type_ = TransactionType.parse(type, 'Tipo')
        frequency = Frequency.parse(frequency, 'Frecuencia')
        start = as_date(start_date)
        end = as_date(end_date) if end_date else None

        if start < now.date():
            raise ValidationError("La fecha de inicio no puede estar en el pasado.")
        if end is not None and end <= start:
            raise ValidationError("La fecha de fin debe ser posterior a la fecha de inicio.")

        template = RecurringTransaction(
            user_id=user_id,
            title=clean_title(title),
            description=description,
            amount=to_amount(amount),
            category=resolve_category(category, type_),
            type=type_,
            frequency=frequency,
            start_date=start,
            end_date=end,
            next_occurrence_date=RecurringTransactionService.calculate_next_occurrence(start, frequency),
            status=RecurringStatus.ACTIVE,
            occurrence_count=0,
            created_date=now,
            last_modified_date=now,
        )
        db.session.add(template)
        db.session.flush()
        logger.info("Transacción recurrente %s creada para usuario %s (%s, próxima %s)",
                    template.id, user_id, frequency.value, template.next_occurrence_date)
        return template

    @staticmethod
    @service_outcome("actualizar transacción recurrente")
    def update_template(template_id, user_id, title=None, amount=None, type=None, category=None,
                        description=None, frequency=None, end_date=None, start_date=None, now=None):
        """Edita la plantilla; la fecha de inicio es inmutable."""
        template = RecurringTransactionService.get_owned_template(template_id, user_id)
        if template.status is RecurringStatus.CANCELLED:
            raise StateConflictError("Una transacción recurrente cancelada no se puede modificar.")
        if start_date is not None and as_date(start_date) != template.start_date:
            raise ValidationError("La fecha de inicio de una transacción recurrente no se puede modificar.")
        now = now or utc_now()

        new_type = TransactionType.parse(type, 'Tipo') if type is not None else template.type
        if category is not None or new_type is not template.type:
            template.category = resolve_category(
                category if category is not None else template.category.value, new_type
            )
        template.type = new_type
        if title is not None:
            template.title = clean_title(title)
        if description is not None:
            template.description = description
        if amount is not None:
            template.amount = to_amount(amount)
        if end_date is not None:
            end = as_date(end_date)
            if end <= template.start_date:
                raise ValidationError("La fecha de fin debe ser posterior a la fecha de inicio.")
            template.end_date = end
        if frequency is not None:
            template.frequency = Frequency.parse(frequency, 'Frecuencia')
            template.next_occurrence_date = RecurringTransactionService.next_occurrence_for(template)

        template.last_modified_date = now
        RecurringTransactionService._retire_if_past_end(template)
        logger.info("Transacción recurrente %s actualizada por usuario %s", template.id, user_id)
        return template

    @staticmethod
    @service_outcome("cambiar estado de transacción recurrente")
    def change_status(template_id, user_id, status, now=None):
        """Escritura directa de estado con control de propiedad. Cancelled es irreversible."""
        template = RecurringTransactionService.get_owned_template(template_id, user_id)
        target = RecurringStatus.parse(status, 'Estado')
        if template.status not in _ALLOWED_TRANSITIONS[target]:
            raise StateConflictError(
                f"No se puede pasar de {template.status.value} a {target.value}."
            )
        template.status = target
        template.last_modified_date = now or utc_now()
        logger.info("Transacción recurrente %s pasa a %s (usuario %s)", template.id, target.value, user_id)
        return template

    @staticmethod
    def pause(template_id, user_id):
        return RecurringTransactionService.change_status(template_id, user_id, RecurringStatus.PAUSED)

    @staticmethod
    def resume(template_id, user_id):
        return RecurringTransactionService.change_status(template_id, user_id, RecurringStatus.ACTIVE)

    @staticmethod
    def cancel(template_id, user_id):
        return RecurringTransactionService.change_status(template_id, user_id, RecurringStatus.CANCELLED)

    @staticmethod
    @service_outcome("eliminar transacción recurrente")
    def delete_template(template_id, user_id):
        template = RecurringTransactionService.get_owned_template(template_id, user_id)
        # Las transacciones generadas son independientes: se conservan sin vínculo
        Transaction.query.filter_by(recurring_transaction_id=template.id).update(
            {'recurring_transaction_id': None}
        )
        db.session.delete(template)
        logger.info("Transacción recurrente %s eliminada por usuario %s", template_id, user_id)
        return {'id': template_id}

    # --- Materialización ---

    @staticmethod
    def _retire_if_past_end(template):
        if template.end_date is not None and template.next_occurrence_date > template.end_date:
            template.status = RecurringStatus.CANCELLED
            logger.info("Transacción recurrente %s alcanzó su fecha de fin y queda cancelada", template.id)
            return True
        return False

    @staticmethod
    def _processing_problem(template, now):
        """Motivo por el que la plantilla no debe procesarse ahora, o None."""
        if not template.title or not template.title.strip():
            return ValidationError("título vacío")
        if template.amount is None or template.amount <= 0:
            return ValidationError("monto no positivo")
        if template.category is None or template.type is None:
            return ValidationError("categoría o tipo ausente")
        if not template.can_be_processed(now):
            return StateConflictError(
                f"no está lista (estado {template.status.value}, próxima {template.next_occurrence_date})"
            )
        return None

    @staticmethod
    def process_template(template, now):
        """Materializa una ocurrencia y avanza la plantilla. No hace commit.

        Un gasto sin saldo suficiente lanza ``InsufficientFundsError`` antes de
        modificar nada.
        """
        problem = RecurringTransactionService._processing_problem(template, now)
        if problem is not None:
            problem.message = f"Transacción recurrente {template.id}: {problem.message}."
            raise problem

        user = BalanceService.load_user(template.user_id)
        if template.type is TransactionType.EXPENSE:
            BalanceService.require_funds(user, template.amount)

        transaction = Transaction(
            user_id=template.user_id,
            title=template.title,
            description=template.description,
            amount=template.amount,
            category=template.category,
            type=template.type,
            date=datetime(now.year, now.month, now.day),
            is_recurring_generated=True,
            recurring_transaction_id=template.id,
        )
        db.session.add(transaction)
        BalanceService.apply_transaction_effect(user, transaction.amount, transaction.type)
        BudgetService.link_expense(transaction)

        template.occurrence_count += 1
        template.last_created_date = now
        template.last_modified_date = now
        template.next_occurrence_date = RecurringTransactionService.next_occurrence_for(template)
        RecurringTransactionService._retire_if_past_end(template)

        db.session.flush()
        return transaction

    @staticmethod
    def retire_expired_templates(now):
        """Cancela plantillas activas o pausadas cuya fecha de fin ya pasó."""
        today = now.date()
        expired = RecurringTransaction.query.filter(
            RecurringTransaction.status.in_([RecurringStatus.ACTIVE, RecurringStatus.PAUSED]),
            RecurringTransaction.end_date.isnot(None),
            RecurringTransaction.end_date <= today,
        ).all()
        for template in expired:
            template.status = RecurringStatus.CANCELLED
            template.last_modified_date = now
            logger.info("Transacción recurrente %s vencida (fin %s); queda cancelada",
                        template.id, template.end_date)
        if expired:
            db.session.commit()
        return len(expired)

    @staticmethod
    def run_processing_sweep(now=None):
        """Procesa todas las plantillas vencidas; cada una en su propia unidad atómica.

        Un fallo (datos inválidos, saldo insuficiente, error inesperado) se
        revierte y se registra sin impedir el procesamiento del resto. Volver a
        ejecutar el barrido no duplica ocurrencias: las plantillas procesadas ya
        no cumplen el filtro de vencimiento.
        """
        now = now or utc_now()
        due = RecurringTransactionService.get_due_templates(now)
        result = {'found': len(due), 'processed': 0, 'skipped': 0, 'failed': 0, 'retired': 0}

        if not due:
            logger.debug("No hay transacciones recurrentes listas a las %s", now)
        else:
            logger.info("Se encontraron %s transacciones recurrentes listas para procesar", len(due))

        for template_id, user_id in [(t.id, t.user_id) for t in due]:
            try:
                template = db.session.get(RecurringTransaction, template_id)
                transaction = RecurringTransactionService.process_template(template, now)
                db.session.commit()
                result['processed'] += 1
                logger.info("Transacción recurrente %s procesada -> transacción %s para usuario %s",
                            template_id, transaction.id, user_id)
            except (ValidationError, StateConflictError, NotFoundError) as e:
                db.session.rollback()
                result['skipped'] += 1
                logger.warning("Transacción recurrente %s omitida (usuario %s): %s", template_id, user_id, e.message)
            except Exception:
                db.session.rollback()
                result['failed'] += 1
                logger.exception("Fallo al procesar la transacción recurrente %s del usuario %s; se revierte",
                                 template_id, user_id)

        try:
            result['retired'] = RecurringTransactionService.retire_expired_templates(now)
        except Exception:
            db.session.rollback()
            logger.exception("Fallo al cancelar transacciones recurrentes vencidas")

        logger.info("Barrido de transacciones recurrentes completado: %s", result)
        return result

    @staticmethod
    @service_outcome("procesar transacción recurrente", success_status=201)
    def process_template_now(template_id, user_id=None, now=None):
        """Procesa una plantilla concreta de inmediato (prueba operativa)."""
        template = db.session.get(RecurringTransaction, template_id)
        if template is None or (user_id is not None and template.user_id != user_id):
            raise NotFoundError("Transacción recurrente no encontrada.")
        return RecurringTransactionService.process_template(template, now or utc_now())
