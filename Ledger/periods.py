"""Aritmética de periodos y fuente de tiempo del motor.

Los meses y años se suman con ``relativedelta`` (consciente del calendario):
el 31 de enero más un mes es el último día de febrero, no "31 + 30 días".
"""
from datetime import date, datetime

import pytz
from dateutil.relativedelta import relativedelta

from Ledger.constants import Frequency
from Ledger.errors import ValidationError

_STEP = {
    Frequency.WEEKLY: relativedelta(days=7),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.YEARLY: relativedelta(years=1),
}


def utc_now():
    """Hora actual en UTC, sin tzinfo (SQLite descarta la zona al persistir)."""
    return datetime.now(pytz.utc).replace(tzinfo=None)


def _from_iso(value):
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Formato de fecha inválido: {value!r}.")


def as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return _from_iso(value).date()
    raise ValidationError(f"Formato de fecha inválido: {value!r}.")


def as_datetime(value):
    """Normaliza a datetime UTC sin tzinfo; una fecha sola se toma a medianoche."""
    if isinstance(value, str):
        value = _from_iso(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None:
            value = value.astimezone(pytz.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise ValidationError(f"Formato de fecha inválido: {value!r}.")


def add_period(start, frequency):
    """Un periodo después de ``start`` (semana, mes o año de calendario)."""
    return start + _STEP[Frequency.parse(frequency)]


def advance(start, frequency, times):
    """``start`` avanzado ``times`` periodos, un periodo a la vez desde el inicio.

    El recorte de fin de mes se arrastra: 31-ene, 29-feb, 29-mar, 29-abr...
    El resultado depende solo de ``start`` y ``times``, nunca de "ahora".
    """
    if times < 0:
        raise ValueError("times debe ser >= 0")
    step = _STEP[Frequency.parse(frequency)]
    current = start
    for _ in range(times):
        current = current + step
    return current


def periods_overlap(start_a, end_a, start_b, end_b):
    """Intersección de intervalos semiabiertos [start, end); ``None`` es abierto."""
    a_before_b_ends = end_b is None or start_a < end_b
    b_before_a_ends = end_a is None or start_b < end_a
    return a_before_b_ends and b_before_a_ends
