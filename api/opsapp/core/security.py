"""
Utilidades de seguridad: verificación de tokens del proveedor de identidad.
"""
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from opsapp.core.config import settings
from opsapp.shared.exceptions.auth import InvalidCredentialsException, TokenExpiredException


class IdentityTokenVerifier:
    """Decodifica y valida los Bearer tokens emitidos por el proveedor de identidad."""

    def __init__(
        self,
        secret: str,
        algorithms: List[str],
        audience: Optional[str] = None,
    ):
        self._secret = secret
        self._algorithms = algorithms
        self._audience = audience

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Decodifica y valida un token JWT.

        Args:
            token: Token JWT a decodificar

        Returns:
            Dict[str, Any]: Claims del token

        Raises:
            InvalidCredentialsException: Si el token es inválido
            TokenExpiredException: Si el token ha expirado
        """
        # Sin audiencia configurada no se valida `aud` (los tokens suelen traerlo).
        options = None if self._audience else {"verify_aud": False}
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                audience=self._audience,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except JWTError:
            raise InvalidCredentialsException()


def build_identity_token_verifier() -> IdentityTokenVerifier:
    """Verificador configurado desde settings."""
    return IdentityTokenVerifier(
        secret=settings.IDENTITY_TOKEN_SECRET,
        algorithms=settings.identity_token_algorithms,
        audience=settings.IDENTITY_TOKEN_AUDIENCE,
    )
