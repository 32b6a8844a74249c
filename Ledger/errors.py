class LedgerError(Exception):
    """Error de negocio que se traduce en un resultado (mensaje, código) en la frontera del servicio."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(LedgerError):
    """Datos inválidos: categoría, monto, fechas, solapamiento de periodos."""
    status_code = 400


class InsufficientFundsError(ValidationError):
    """El saldo (o la reserva de la meta) no cubre el monto solicitado."""


class NotFoundError(LedgerError):
    """Entidad inexistente o que no pertenece al usuario."""
    status_code = 404


class StateConflictError(LedgerError):
    """La entidad no está en un estado que permita la operación."""
    status_code = 409
