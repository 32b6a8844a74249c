from flask import Blueprint, request, jsonify

from Ledger.budgets import BudgetService
from Ledger.errors import LedgerError
from Ledger.goals import GoalService
from Ledger.recurring import RecurringTransactionService
from Ledger.snapshots import SnapshotService
from Ledger.transactions import TransactionService
from Ledger.users import UserService

# Crea un Blueprint para organizar las rutas de la API
api_bp = Blueprint('api', __name__, url_prefix='/api/v1')


def _payload():
    return request.get_json(silent=True) or {}


def _user_id(data=None):
    """El id del usuario autenticado lo aporta el llamador (la autenticación es externa)."""
    value = (data or {}).get('user_id', request.args.get('user_id'))
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _respond(result, status_code):
    """Traduce el resultado (entidad o mensaje, código) de un servicio a JSON."""
    if status_code >= 400:
        return jsonify({"message": result}), status_code
    if hasattr(result, 'to_dict'):
        result = result.to_dict()
    return jsonify(result), status_code


def _missing_user():
    return jsonify({"message": "Falta user_id."}), 400


@api_bp.errorhandler(LedgerError)
def handle_ledger_error(error):
    return jsonify({"message": error.message}), error.status_code


# --- Usuarios y saldo ---

@api_bp.route('/users', methods=['POST'])
def create_user():
    data = _payload()
    return _respond(*UserService.create_user(data.get('email'), data.get('initial_balance', 0)))


@api_bp.route('/balance/<int:user_id>', methods=['GET'])
def get_balance(user_id):
    """Saldo disponible y reservado del usuario."""
    balance = UserService.get_balance(user_id)
    balance.update(TransactionService.calculate_balance(user_id))
    return jsonify(balance), 200


# --- Transacciones ---

@api_bp.route('/transactions', methods=['POST'])
def add_transaction():
    """Ruta para agregar una nueva transacción."""
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    if not all([data.get('title'), data.get('amount'), data.get('type')]):
        return jsonify({"message": "Datos de transacción incompletos."}), 400
    return _respond(*TransactionService.record_transaction(
        user_id, data['title'], data['amount'], data['type'],
        category=data.get('category'), description=data.get('description'), date=data.get('date'),
    ))


@api_bp.route('/transactions/<int:transaction_id>', methods=['PUT'])
def update_transaction(transaction_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    return _respond(*TransactionService.update_transaction(
        transaction_id, user_id,
        title=data.get('title'), amount=data.get('amount'), type=data.get('type'),
        category=data.get('category'), description=data.get('description'), date=data.get('date'),
    ))


@api_bp.route('/transactions/<int:transaction_id>', methods=['DELETE'])
def delete_transaction(transaction_id):
    user_id = _user_id(_payload())
    if user_id is None:
        return _missing_user()
    return _respond(*TransactionService.delete_transaction(transaction_id, user_id))


@api_bp.route('/transactions/user/<int:user_id>', methods=['GET'])
def list_transactions(user_id):
    transactions = TransactionService.get_transactions(
        user_id, request.args.get('start_date'), request.args.get('end_date')
    )
    return jsonify([t.to_dict() for t in transactions]), 200


@api_bp.route('/transactions/user/<int:user_id>/summary', methods=['GET'])
def transaction_summary(user_id):
    return jsonify(TransactionService.get_transaction_summary(user_id)), 200


# --- Presupuestos ---

@api_bp.route('/budgets', methods=['POST'])
def create_budget():
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    if not all([data.get('category'), data.get('planned_amount'), data.get('start_date')]):
        return jsonify({"message": "Faltan datos (category, planned_amount, start_date)."}), 400
    return _respond(*BudgetService.create_budget(
        user_id, data['category'], data['planned_amount'], data['start_date'],
        frequency=data.get('renewal_frequency', 'Monthly'),
        auto_renewal=data.get('auto_renewal_enabled', False),
        reminder=data.get('reminder', False),
    ))


@api_bp.route('/budgets/<int:budget_id>', methods=['PUT'])
def update_budget(budget_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    return _respond(*BudgetService.update_budget(
        budget_id, user_id,
        planned_amount=data.get('planned_amount'), reminder=data.get('reminder'),
        frequency=data.get('renewal_frequency'), auto_renewal=data.get('auto_renewal_enabled'),
        category=data.get('category'), start_date=data.get('start_date'),
    ))


@api_bp.route('/budgets/<int:budget_id>', methods=['DELETE'])
def delete_budget(budget_id):
    user_id = _user_id(_payload())
    if user_id is None:
        return _missing_user()
    return _respond(*BudgetService.delete_budget(budget_id, user_id))


@api_bp.route('/budgets/<int:budget_id>/auto-renewal', methods=['PUT'])
def toggle_auto_renewal(budget_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    return _respond(*BudgetService.toggle_auto_renewal(
        budget_id, user_id, data.get('auto_renewal_enabled', False)
    ))


@api_bp.route('/budgets/user/<int:user_id>', methods=['GET'])
def list_budgets(user_id):
    return jsonify([b.to_dict() for b in BudgetService.get_budgets(user_id)]), 200


@api_bp.route('/budgets/user/<int:user_id>/summary', methods=['GET'])
def budget_summary(user_id):
    return jsonify(BudgetService.get_budget_summary(user_id)), 200


@api_bp.route('/budgets/user/<int:user_id>/active-categories', methods=['GET'])
def active_budget_categories(user_id):
    return jsonify(BudgetService.get_categories_with_active_budgets(user_id)), 200


# --- Transacciones recurrentes ---

@api_bp.route('/recurring', methods=['POST'])
def create_recurring():
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    required = ['title', 'amount', 'type', 'frequency', 'start_date']
    if not all(data.get(field) for field in required):
        return jsonify({"message": f"Faltan datos ({', '.join(required)})."}), 400
    return _respond(*RecurringTransactionService.create_template(
        user_id, data['title'], data['amount'], data['type'], data['frequency'], data['start_date'],
        category=data.get('category'), description=data.get('description'), end_date=data.get('end_date'),
    ))


@api_bp.route('/recurring/<int:template_id>', methods=['PUT'])
def update_recurring(template_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    return _respond(*RecurringTransactionService.update_template(
        template_id, user_id,
        title=data.get('title'), amount=data.get('amount'), type=data.get('type'),
        category=data.get('category'), description=data.get('description'),
        frequency=data.get('frequency'), end_date=data.get('end_date'), start_date=data.get('start_date'),
    ))


@api_bp.route('/recurring/<int:template_id>/<action>', methods=['POST'])
def change_recurring_status(template_id, action):
    """Acciones de estado: pause, resume, cancel y process (procesar ahora)."""
    user_id = _user_id(_payload())
    if user_id is None:
        return _missing_user()
    actions = {
        'pause': RecurringTransactionService.pause,
        'resume': RecurringTransactionService.resume,
        'cancel': RecurringTransactionService.cancel,
        'process': RecurringTransactionService.process_template_now,
    }
    if action not in actions:
        return jsonify({"message": f"Acción desconocida: {action}."}), 404
    return _respond(*actions[action](template_id, user_id))


@api_bp.route('/recurring/<int:template_id>', methods=['DELETE'])
def delete_recurring(template_id):
    user_id = _user_id(_payload())
    if user_id is None:
        return _missing_user()
    return _respond(*RecurringTransactionService.delete_template(template_id, user_id))


@api_bp.route('/recurring/user/<int:user_id>', methods=['GET'])
def list_recurring(user_id):
    templates = RecurringTransactionService.get_templates(
        user_id, status=request.args.get('status'), frequency=request.args.get('frequency')
    )
    return jsonify([t.to_dict() for t in templates]), 200


@api_bp.route('/recurring/user/<int:user_id>/summary', methods=['GET'])
def recurring_summary(user_id):
    return jsonify(RecurringTransactionService.get_summary(user_id)), 200


# --- Metas ---

@api_bp.route('/goals', methods=['POST'])
def create_goal():
    """Ruta para crear una nueva meta financiera."""
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    if data.get('title') is None or data.get('target_amount') is None or data.get('target_date') is None:
        return jsonify({"message": "Faltan datos obligatorios (title, target_amount, target_date)."}), 400
    return _respond(*GoalService.create_goal(
        user_id, data['title'], data['target_amount'], data['target_date'],
        priority=data.get('priority', 'Medium'), description=data.get('description'),
        reminder=data.get('reminder', False),
    ))


@api_bp.route('/goals/<int:goal_id>', methods=['PUT'])
def update_goal(goal_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None:
        return _missing_user()
    return _respond(*GoalService.update_goal(
        goal_id, user_id,
        title=data.get('title'), description=data.get('description'),
        target_amount=data.get('target_amount'), target_date=data.get('target_date'),
        priority=data.get('priority'), reminder=data.get('reminder'),
    ))


@api_bp.route('/goals/<int:goal_id>', methods=['DELETE'])
def delete_goal(goal_id):
    user_id = _user_id(_payload())
    if user_id is None:
        return _missing_user()
    return _respond(*GoalService.delete_goal(goal_id, user_id))


@api_bp.route('/goals/<int:goal_id>/add-funds', methods=['POST'])
def add_funds(goal_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None or data.get('amount') is None:
        return jsonify({"message": "Faltan datos (user_id, amount)."}), 400
    return _respond(*GoalService.add_funds(goal_id, data['amount'], user_id))


@api_bp.route('/goals/<int:goal_id>/withdraw', methods=['POST'])
def withdraw_funds(goal_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None or data.get('amount') is None:
        return jsonify({"message": "Faltan datos (user_id, amount)."}), 400
    return _respond(*GoalService.withdraw_funds(goal_id, data['amount'], user_id))


@api_bp.route('/goals/<int:goal_id>/convert', methods=['POST'])
def convert_goal(goal_id):
    data = _payload()
    user_id = _user_id(data)
    if user_id is None or data.get('amount') is None:
        return jsonify({"message": "Faltan datos (user_id, amount)."}), 400
    return _respond(*GoalService.convert_to_expense(
        goal_id, data['amount'], data.get('title'), data.get('category'), user_id,
        description=data.get('description'), mark_completed=data.get('mark_completed', True),
    ))


@api_bp.route('/goals/user/<int:user_id>', methods=['GET'])
def list_goals(user_id):
    """Ruta para obtener todas las metas de un usuario."""
    return jsonify([g.to_dict() for g in GoalService.get_user_goals(user_id)]), 200


@api_bp.route('/goals/user/<int:user_id>/summary', methods=['GET'])
def goal_summary(user_id):
    return jsonify(GoalService.get_goal_summary(user_id)), 200


# --- Capturas diarias ---

@api_bp.route('/snapshots/user/<int:user_id>', methods=['GET'])
def snapshot_history(user_id):
    start_date = request.args.get('start_date')
    end_date = request.args.get('end_date')
    if not start_date or not end_date:
        latest = SnapshotService.get_latest(user_id)
        return jsonify([latest.to_dict()] if latest else []), 200
    snapshots = SnapshotService.get_history(user_id, start_date, end_date)
    return jsonify([s.to_dict() for s in snapshots]), 200
