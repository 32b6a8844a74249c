import functools
import logging

from Ledger.errors import LedgerError
from Ledger.models import db

logger = logging.getLogger(__name__)

SERVER_ERROR = "Error de servidor."


def service_outcome(operation, success_status=200):
    """Frontera de los servicios: convierte la operación en ``(resultado, código)``.

    Si la función termina sin error se hace commit de toda la unidad de
    trabajo. Un ``LedgerError`` revierte la sesión y se devuelve su mensaje;
    cualquier otra excepción revierte, se registra con traza y se devuelve
    como error genérico 500.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                db.session.commit()
                return result, success_status
            except LedgerError as e:
                db.session.rollback()
                logger.warning("%s rechazado (%s): %s", operation, e.status_code, e.message)
                return e.message, e.status_code
            except Exception:
                db.session.rollback()
                logger.exception("ERROR al %s. args=%r kwargs=%r", operation, args, kwargs)
                return SERVER_ERROR, 500
        return wrapper
    return decorator
