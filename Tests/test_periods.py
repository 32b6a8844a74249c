import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from datetime import date, datetime

from Ledger.constants import Category, Frequency, RecurringStatus, TransactionType
from Ledger.errors import ValidationError
from Ledger.periods import add_period, advance, as_date, as_datetime, periods_overlap


def test_weekly_period_is_seven_days():
    assert add_period(date(2024, 1, 1), Frequency.WEEKLY) == date(2024, 1, 8)


def test_monthly_period_is_calendar_aware():
    assert add_period(date(2024, 1, 1), Frequency.MONTHLY) == date(2024, 2, 1)
    # Año bisiesto: el 31 de enero pasa al último día de febrero
    assert add_period(date(2024, 1, 31), Frequency.MONTHLY) == date(2024, 2, 29)
    assert add_period(date(2023, 1, 31), Frequency.MONTHLY) == date(2023, 2, 28)


def test_yearly_period_is_calendar_aware():
    assert add_period(date(2024, 3, 15), Frequency.YEARLY) == date(2025, 3, 15)
    assert add_period(date(2024, 2, 29), Frequency.YEARLY) == date(2025, 2, 28)


def test_add_period_accepts_labels():
    assert add_period(date(2024, 1, 1), 'monthly') == date(2024, 2, 1)


def test_advance_is_computed_from_start():
    start = date(2024, 1, 1)
    assert advance(start, Frequency.WEEKLY, 0) == start
    assert advance(start, Frequency.WEEKLY, 2) == date(2024, 1, 15)

    current = start
    for _ in range(10):
        current = add_period(current, Frequency.WEEKLY)
    assert advance(start, Frequency.WEEKLY, 10) == current


def test_advance_walks_one_month_at_a_time():
    start = date(2024, 1, 31)
    assert advance(start, Frequency.MONTHLY, 1) == date(2024, 2, 29)
    # El recorte del 29 de febrero se arrastra a los meses siguientes
    assert advance(start, Frequency.MONTHLY, 2) == date(2024, 3, 29)
    assert advance(start, Frequency.MONTHLY, 3) == date(2024, 4, 29)
    assert advance(start, Frequency.MONTHLY, 3) == add_period(add_period(add_period(start, 'Monthly'), 'Monthly'),
                                                              'Monthly')


def test_advance_rejects_negative_times():
    with pytest.raises(ValueError):
        advance(date(2024, 1, 1), Frequency.MONTHLY, -1)


@pytest.mark.parametrize("a, b, expected", [
    ((date(2024, 1, 1), date(2024, 2, 1)), (date(2024, 1, 15), date(2024, 2, 15)), True),
    ((date(2024, 1, 1), date(2024, 2, 1)), (date(2024, 2, 1), date(2024, 3, 1)), False),
    ((date(2024, 2, 1), date(2024, 3, 1)), (date(2024, 1, 1), date(2024, 2, 1)), False),
    ((date(2024, 1, 1), None), (date(2030, 1, 1), date(2030, 2, 1)), True),
    ((date(2024, 1, 10), date(2024, 1, 12)), (date(2024, 1, 1), date(2024, 2, 1)), True),
])
def test_half_open_overlap(a, b, expected):
    assert periods_overlap(a[0], a[1], b[0], b[1]) is expected


def test_category_parse_is_case_insensitive():
    assert Category.parse('food') is Category.FOOD
    assert Category.parse('  TRANSPORTATION ') is Category.TRANSPORTATION
    assert TransactionType.parse('expense') is TransactionType.EXPENSE
    assert RecurringStatus.parse('Paused') is RecurringStatus.PAUSED


def test_category_parse_rejects_unknown_values():
    with pytest.raises(ValidationError) as excinfo:
        Category.parse('Vacaciones')
    assert 'Food' in excinfo.value.message


def test_income_is_not_a_spending_category():
    with pytest.raises(ValidationError):
        Category.parse_spending('Income')
    assert Category.INCOME not in Category.spending()
    assert len(Category.spending()) == 8


def test_date_parsing():
    assert as_date('2024-01-15') == date(2024, 1, 15)
    assert as_date(datetime(2024, 1, 15, 10, 30)) == date(2024, 1, 15)
    assert as_datetime('2024-01-15T10:30:00+02:00') == datetime(2024, 1, 15, 8, 30)
    assert as_datetime(date(2024, 1, 15)) == datetime(2024, 1, 15)
    with pytest.raises(ValidationError):
        as_date('15/01/2024')
