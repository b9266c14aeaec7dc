"""
Excepciones relacionadas con autenticación y autorización del migrador.
"""
from opsapp.shared.exceptions.base import AppException


class AuthException(AppException):
    """Excepción base para errores de autenticación."""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class InvalidCredentialsException(AuthException):
    """Token inválido (firma, formato o audiencia)."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(
            message=message,
            error_code="INVALID_CREDENTIALS"
        )


class TokenExpiredException(AuthException):
    """Excepción para token expirado."""

    def __init__(self):
        super().__init__(
            message="Invalid or expired token",
            error_code="TOKEN_EXPIRED"
        )


class UnauthorizedException(AuthException):
    """Excepción para acceso no autorizado."""

    def __init__(self, message: str = "Missing authorization token"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED"
        )


class ForbiddenException(AppException):
    """El llamante está identificado pero no tiene privilegios."""

    def __init__(self, message: str = "Forbidden: dev_permission required"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN"
        )
