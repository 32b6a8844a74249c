import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
import json
import allure
from datetime import datetime
from decimal import Decimal
from Main import create_app
from config import TestingConfig
from Ledger.models import db, User, Transaction, Budget
from Ledger.budgets import BudgetService
from Ledger.transactions import TransactionService
from Ledger.users import UserService


@pytest.fixture
def app():
    """Configura la app para pruebas con la DB en memoria."""
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        # Crear un usuario de prueba con saldo inicial
        UserService.create_user('user@finance.com', 1000)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Crea un cliente de prueba para hacer solicitudes HTTP."""
    return app.test_client()


@pytest.fixture
def test_user_id(app):
    """Retorna el ID del usuario de prueba."""
    with app.app_context():
        user = User.query.filter_by(email='user@finance.com').first()
        return user.id


def current_balance(user_id):
    db.session.expire_all()
    return db.session.get(User, user_id).balance_amount


# --------------------------
# PRUEBAS CON ALLURE
# --------------------------

@allure.feature("Transacciones")
@allure.story("Registro de ingresos")
@allure.severity(allure.severity_level.CRITICAL)
@allure.description("Verifica que registrar un ingreso sume el monto al saldo en la misma operación.")
def test_record_income_success(client, test_user_id):
    with allure.step("Enviar solicitud POST para registrar un ingreso"):
        payload = dict(user_id=test_user_id, title='Salario', amount=500.00, type='Income',
                       description='Salario mensual')
        response = client.post('/api/v1/transactions', data=json.dumps(payload), content_type='application/json')
        allure.attach(json.dumps(payload, indent=2), name="Payload de ingreso", attachment_type=allure.attachment_type.JSON)
        assert response.status_code == 201
        assert response.get_json()['category'] == 'Income'

    with allure.step("Verificar la transacción y el saldo"):
        assert Transaction.query.count() == 1
        assert current_balance(test_user_id) == Decimal('1500.00')


@allure.feature("Transacciones")
@allure.story("Registro de gastos")
@allure.severity(allure.severity_level.CRITICAL)
@allure.description("Verifica que registrar un gasto reste el monto del saldo.")
def test_record_expense_success(client, test_user_id):
    with allure.step("Enviar solicitud POST para registrar un gasto"):
        payload = dict(user_id=test_user_id, title='Supermercado', amount=50.50, type='expense', category='food')
        response = client.post('/api/v1/transactions', data=json.dumps(payload), content_type='application/json')
        assert response.status_code == 201
        data = response.get_json()
        assert data['type'] == 'Expense'
        assert data['category'] == 'Food'

    with allure.step("Verificar que el saldo disminuyó"):
        assert current_balance(test_user_id) == Decimal('949.50')


@allure.feature("Transacciones")
@allure.story("Validación de datos")
@allure.severity(allure.severity_level.NORMAL)
@allure.description("Un gasto sin categoría, con categoría 'Income' o con monto no positivo se rechaza sin tocar el saldo.")
@pytest.mark.parametrize("payload", [
    dict(title='Sin categoría', amount=10, type='Expense'),
    dict(title='Categoría inválida', amount=10, type='Expense', category='Vacaciones'),
    dict(title='Gasto como ingreso', amount=10, type='Expense', category='Income'),
    dict(title='Monto negativo', amount=-10, type='Expense', category='Food'),
    dict(title='Monto texto', amount='diez', type='Expense', category='Food'),
    dict(title='Tipo inválido', amount=10, type='Transferencia', category='Food'),
])
def test_record_transaction_invalid_data(client, test_user_id, payload):
    payload['user_id'] = test_user_id
    response = client.post('/api/v1/transactions', data=json.dumps(payload), content_type='application/json')
    assert response.status_code == 400
    assert 'message' in response.get_json()
    assert Transaction.query.count() == 0
    assert current_balance(test_user_id) == Decimal('1000.00')


def test_record_transaction_missing_fields(client, test_user_id):
    response = client.post('/api/v1/transactions', data=json.dumps(dict(user_id=test_user_id, amount=10)),
                           content_type='application/json')
    assert response.status_code == 400
    assert response.get_json()['message'] == "Datos de transacción incompletos."


def test_record_transaction_unknown_user(app):
    result, status = TransactionService.record_transaction(999, 'Café', 5, 'Expense', category='Food')
    assert status == 404
    assert Transaction.query.count() == 0


@allure.feature("Transacciones")
@allure.story("Vinculación con presupuestos")
@allure.severity(allure.severity_level.CRITICAL)
@allure.description("Un gasto dentro del periodo de un presupuesto de su categoría acumula gasto en ese presupuesto.")
def test_expense_links_to_budget(app, test_user_id):
    budget, status = BudgetService.create_budget(test_user_id, 'Food', 500, '2024-01-01')
    assert status == 201
    budget_id = budget.id

    with allure.step("Registrar un gasto dentro del periodo y otro en la fecha de fin"):
        inside, _ = TransactionService.record_transaction(
            test_user_id, 'Mercado', 120, 'Expense', category='Food', date='2024-01-20T10:00:00')
        boundary, _ = TransactionService.record_transaction(
            test_user_id, 'Cena', 30, 'Expense', category='Food', date='2024-02-01T12:00:00')

    with allure.step("Solo el gasto dentro de [inicio, fin) queda vinculado"):
        assert inside.budget_id == budget_id
        assert boundary.budget_id is None
        assert db.session.get(Budget, budget_id).spent_amount == Decimal('120.00')


def test_income_is_never_linked_to_budget(app, test_user_id):
    BudgetService.create_budget(test_user_id, 'Food', 500, '2024-01-01')
    income, status = TransactionService.record_transaction(
        test_user_id, 'Reembolso', 40, 'Income', category='Food', date='2024-01-10')
    assert status == 201
    assert income.budget_id is None


@allure.feature("Transacciones")
@allure.story("Edición")
@allure.severity(allure.severity_level.CRITICAL)
@allure.description("Editar monto y tipo aplica un único delta neto al saldo y mueve el gasto entre presupuestos.")
def test_update_transaction_applies_net_delta(app, test_user_id):
    food, _ = BudgetService.create_budget(test_user_id, 'Food', 500, '2024-01-01')
    transport, _ = BudgetService.create_budget(test_user_id, 'Transportation', 200, '2024-01-01')
    food_id, transport_id = food.id, transport.id
    expense, _ = TransactionService.record_transaction(
        test_user_id, 'Mercado', 100, 'Expense', category='Food', date='2024-01-10')
    assert current_balance(test_user_id) == Decimal('900.00')

    with allure.step("Cambiar el monto y la categoría"):
        updated, status = TransactionService.update_transaction(
            expense.id, test_user_id, amount=60, category='Transportation')
        assert status == 200
        assert updated.budget_id == transport_id
        assert current_balance(test_user_id) == Decimal('940.00')
        assert db.session.get(Budget, food_id).spent_amount == Decimal('0.00')
        assert db.session.get(Budget, transport_id).spent_amount == Decimal('60.00')

    with allure.step("Convertir el gasto en ingreso"):
        updated, status = TransactionService.update_transaction(expense.id, test_user_id, type='Income')
        assert status == 200
        assert updated.category.value == 'Transportation'
        assert updated.budget_id is None
        # 1000 - 60 revertido + 60 de ingreso
        assert current_balance(test_user_id) == Decimal('1060.00')
        assert db.session.get(Budget, transport_id).spent_amount == Decimal('0.00')


def test_invalid_update_leaves_everything_unchanged(app, test_user_id):
    budget, _ = BudgetService.create_budget(test_user_id, 'Food', 500, '2024-01-01')
    budget_id = budget.id
    expense, _ = TransactionService.record_transaction(
        test_user_id, 'Mercado', 100, 'Expense', category='Food', date='2024-01-10')

    message, status = TransactionService.update_transaction(expense.id, test_user_id, amount=0)
    assert status == 400

    db.session.expire_all()
    assert db.session.get(Transaction, expense.id).amount == Decimal('100.00')
    assert db.session.get(Budget, budget_id).spent_amount == Decimal('100.00')
    assert current_balance(test_user_id) == Decimal('900.00')


def test_update_transaction_of_other_user_is_not_found(app, test_user_id):
    other, _ = UserService.create_user('otro@finance.com', 0)
    expense, _ = TransactionService.record_transaction(
        test_user_id, 'Mercado', 100, 'Expense', category='Food')
    message, status = TransactionService.update_transaction(expense.id, other.id, amount=1)
    assert status == 404


@allure.feature("Transacciones")
@allure.story("Eliminación")
@allure.severity(allure.severity_level.CRITICAL)
@allure.description("Eliminar una transacción revierte su efecto en saldo y presupuesto.")
def test_delete_transaction_reverses_effects(client, test_user_id):
    budget, _ = BudgetService.create_budget(test_user_id, 'Food', 500, '2024-01-01')
    budget_id = budget.id
    expense, _ = TransactionService.record_transaction(
        test_user_id, 'Mercado', 100, 'Expense', category='Food', date='2024-01-10')
    expense_id = expense.id

    response = client.delete(f'/api/v1/transactions/{expense_id}',
                             data=json.dumps(dict(user_id=test_user_id)), content_type='application/json')
    assert response.status_code == 200
    assert response.get_json() == {'id': expense_id}

    db.session.expire_all()
    assert db.session.get(Transaction, expense_id) is None
    assert db.session.get(Budget, budget_id).spent_amount == Decimal('0.00')
    assert current_balance(test_user_id) == Decimal('1000.00')


def test_balance_matches_history_after_mixed_operations(app, test_user_id):
    """El saldo es el inicial más ingresos menos gastos tras cualquier secuencia."""
    salary, _ = TransactionService.record_transaction(test_user_id, 'Salario', 2000, 'Income')
    rent, _ = TransactionService.record_transaction(test_user_id, 'Arriendo', 800, 'Expense', category='Rent')
    food, _ = TransactionService.record_transaction(test_user_id, 'Mercado', 150.25, 'Expense', category='Food')
    TransactionService.update_transaction(rent.id, test_user_id, amount=850)
    TransactionService.delete_transaction(food.id, test_user_id)

    totals = TransactionService.calculate_balance(test_user_id)
    assert totals == {'total_income': 2000.0, 'total_expense': 850.0, 'consolidated_balance': 1150.0}
    assert current_balance(test_user_id) == Decimal('1000.00') + Decimal('1150.00')


def test_transactions_date_filter(app, test_user_id):
    TransactionService.record_transaction(test_user_id, 'Enero', 10, 'Expense', category='Food', date='2024-01-15')
    TransactionService.record_transaction(test_user_id, 'Febrero', 20, 'Expense', category='Food', date='2024-02-15')
    TransactionService.record_transaction(test_user_id, 'Marzo', 30, 'Expense', category='Food', date='2024-03-15')

    result = TransactionService.get_transactions(test_user_id, '2024-02-01', '2024-02-28')
    assert [t.title for t in result] == ['Febrero']
    assert [t.title for t in TransactionService.get_transactions(test_user_id)] == ['Marzo', 'Febrero', 'Enero']


def test_transaction_summary_for_current_month(client, test_user_id):
    TransactionService.record_transaction(test_user_id, 'Salario', 1000, 'Income', date='2024-03-01')
    TransactionService.record_transaction(test_user_id, 'Mercado', 200, 'Expense', category='Food', date='2024-03-05')
    TransactionService.record_transaction(test_user_id, 'Bus', 50, 'Expense', category='Transportation', date='2024-03-06')
    TransactionService.record_transaction(test_user_id, 'Mes anterior', 999, 'Expense', category='Food', date='2024-02-28')

    summary = TransactionService.get_transaction_summary(test_user_id, now=datetime(2024, 3, 20))
    assert summary['total_transactions'] == 3
    assert summary['total_income'] == 1000.0
    assert summary['total_expenses'] == 250.0
    assert summary['net_amount'] == 750.0
    assert summary['category_breakdown'] == {'Income': 1000.0, 'Food': 200.0, 'Transportation': 50.0}
    assert summary['type_breakdown'] == {'Income': 1, 'Expense': 2}
    assert summary['recent_transactions'][0]['title'] == 'Bus'


def test_balance_route(client, test_user_id):
    TransactionService.record_transaction(test_user_id, 'Salario', 300, 'Income')
    response = client.get(f'/api/v1/balance/{test_user_id}')
    assert response.status_code == 200
    data = response.get_json()
    assert data['balance_amount'] == 1300.0
    assert data['initial_balance'] == 1000.0
    assert data['reserved_amount'] == 0.0
    assert data['total_income'] == 300.0


def test_balance_route_unknown_user(client):
    response = client.get('/api/v1/balance/999')
    assert response.status_code == 404
    assert response.get_json()['message'] == "Usuario no encontrado."
