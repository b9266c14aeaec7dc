"""
Excepción base para todas las excepciones personalizadas del backend.
"""
from typing import Optional, Dict, Any


class AppException(Exception):
    """
    Excepción base de la aplicación.

    Lleva el código HTTP con el que la API debe responder, de modo que el
    handler global de FastAPI no necesite conocer cada subclase.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Mensaje de error descriptivo
            status_code: Código de estado HTTP
            error_code: Código de error estable (para clientes)
            details: Detalles adicionales del error
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        """Cuerpo JSON con el que se responde este error."""
        return {
            "error": self.message,
            "code": self.error_code,
            "details": self.details,
        }
