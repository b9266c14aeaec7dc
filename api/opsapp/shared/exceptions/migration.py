"""
Excepciones del motor de migración Bubble -> Postgres.

Solo `MigrationConfigError` y los errores no previstos abortan una corrida.
`SourceFetchError` y `TargetWriteError` se capturan dentro del pipeline y se
convierten en entradas del reporte.
"""
from typing import Any, Optional

from opsapp.shared.exceptions.base import AppException


class MigrationException(AppException):
    """Excepción base del migrador."""

    def __init__(self, message: str, error_code: str = "MIGRATION_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=500,
            error_code=error_code,
            details=details
        )


class SourceFetchError(MigrationException):
    """Fallo de red o HTTP no-2xx al pedir una página a la API de Bubble."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="SOURCE_FETCH_ERROR",
            details={"http_status": status_code} if status_code else None
        )
        self.http_status = status_code


class TargetWriteError(MigrationException):
    """El store destino rechazó una fila (constraint, tipo, etc.)."""

    def __init__(self, table: str, message: str, row_key: Any = None):
        super().__init__(
            message=message,
            error_code="TARGET_WRITE_ERROR",
            details={"table": table, "key": str(row_key) if row_key is not None else None}
        )
        self.table = table


class MigrationConfigError(MigrationException):
    """Configuración incompleta (token de Bubble, DSN, etc.)."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="MIGRATION_CONFIG_ERROR")


class TargetReadError(MigrationException):
    """Lectura fallida en el store destino (tabla o columna inexistente, etc.)."""

    def __init__(self, table: str, message: str):
        super().__init__(
            message=message,
            error_code="TARGET_READ_ERROR",
            details={"table": table}
        )
        self.table = table
