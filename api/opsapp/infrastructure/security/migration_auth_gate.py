"""
Gate de autorización del endpoint de migración.

Acepta dos credenciales:
- `Authorization: Bearer <jwt>` del proveedor de identidad: el claim `email`
  identifica al usuario en `users`.
- `X-Bubble-Token: <token de sesión legacy>`: Bubble lo valida y devuelve el
  id del dueño, que se busca en `users` por `bubble_id`.

En ambos casos el usuario debe tener `dev_permission`. El gate solo lee: no
produce efectos antes de autorizar.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from opsapp.core.security import IdentityTokenVerifier
from opsapp.infrastructure.external.bubble_migration.bubble_client import BubbleDataClient
from opsapp.infrastructure.external.bubble_migration.target_store import TargetStore
from opsapp.infrastructure.external.bubble_migration.types import FOREIGN_ID_COLUMN, LOCAL_ID_COLUMN
from opsapp.shared.exceptions.auth import (
    ForbiddenException,
    InvalidCredentialsException,
    UnauthorizedException,
)
from opsapp.shared.exceptions.migration import SourceFetchError

USERS_TABLE = "users"
BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthorizedCaller:
    user_id: str
    method: str  # "identity_token" | "bubble_token"
    email: Optional[str] = None


class MigrationAuthGate:
    def __init__(
        self,
        *,
        store: TargetStore,
        bubble: BubbleDataClient,
        verifier: IdentityTokenVerifier,
    ) -> None:
        self._store = store
        self._bubble = bubble
        self._verifier = verifier

    def authorize(
        self,
        authorization: Optional[str] = None,
        bubble_token: Optional[str] = None,
    ) -> AuthorizedCaller:
        """
        Raises:
            UnauthorizedException: sin credenciales
            InvalidCredentialsException / TokenExpiredException: credencial inválida
            ForbiddenException: usuario sin dev_permission
        """
        if authorization and authorization.startswith(BEARER_PREFIX):
            return self._authorize_identity_token(authorization[len(BEARER_PREFIX):].strip())
        if bubble_token:
            return self._authorize_bubble_token(bubble_token.strip())
        raise UnauthorizedException()

    def _authorize_identity_token(self, token: str) -> AuthorizedCaller:
        if not token:
            raise UnauthorizedException()
        claims = self._verifier.decode(token)
        email = claims.get("email")
        if not email:
            raise InvalidCredentialsException("Token has no email claim")

        user = self._find_user("email", email)
        self._require_dev_permission(user, f"email={email}")
        return AuthorizedCaller(user_id=str(user[LOCAL_ID_COLUMN]), method="identity_token", email=email)

    def _authorize_bubble_token(self, token: str) -> AuthorizedCaller:
        try:
            bubble_user_id = self._bubble.validate_session_token(token)
        except SourceFetchError as e:
            logger.warning(f"validate_token falló: {e.message}")
            raise InvalidCredentialsException("Invalid Bubble token")
        if not bubble_user_id:
            raise InvalidCredentialsException("Invalid Bubble token")

        user = self._find_user(FOREIGN_ID_COLUMN, bubble_user_id)
        self._require_dev_permission(user, f"bubble_id={bubble_user_id}")
        return AuthorizedCaller(user_id=str(user[LOCAL_ID_COLUMN]), method="bubble_token", email=user.get("email"))

    def _find_user(self, column: str, value: str) -> Optional[dict]:
        rows = self._store.select_rows(
            USERS_TABLE,
            [LOCAL_ID_COLUMN, "email", "dev_permission"],
            equals={column: value},
        )
        return rows[0] if rows else None

    @staticmethod
    def _require_dev_permission(user: Optional[dict], who: str) -> None:
        if not user or not user.get("dev_permission"):
            logger.warning(f"Migración rechazada: {who} sin dev_permission")
            raise ForbiddenException()
