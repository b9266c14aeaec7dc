"""
Cliente mínimo de la Bubble Data API (sin SDKs externos).

Requisitos cubiertos:
- requests
- paginación por cursor (`limit` + `cursor`, respuesta con `remaining`)
- rate-limit: intervalo mínimo global entre requests (RequestRateLimiter)
- incremental fetch usando constraints JSON ("Modified Date" greater than)
- fail fast: sin reintentos; una página fallida corta solo ese tipo
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import requests
from loguru import logger

from opsapp.shared.exceptions.migration import SourceFetchError

from .rate_limiter import RequestRateLimiter
from .types import Constraint, FetchResult


@dataclass(frozen=True)
class BubbleCredentials:
    token: str
    base_url: str


def build_constraints_param(constraints: Iterable[Constraint]) -> Optional[str]:
    """Serializa constraints al formato que espera el query param `constraints`."""
    items = [c.to_dict() for c in constraints]
    if not items:
        return None
    return json.dumps(items)


class BubbleDataClient:
    """
    Cliente HTTP de la Data API de Bubble.

    Importante:
    - No hace cast de tipos de campos: los DTOs se devuelven crudos y la
      normalización es responsabilidad de los transformers.
    - Todas las requests pasan por el mismo RequestRateLimiter.
    """

    def __init__(
        self,
        credentials: BubbleCredentials,
        *,
        rate_limiter: RequestRateLimiter,
        session: Optional[requests.Session] = None,
        page_size: int = 100,
        timeout_s: float = 30.0,
    ) -> None:
        self._creds = credentials
        self._base_url = credentials.base_url.rstrip("/")
        self._limiter = rate_limiter
        self._session = session or requests.Session()
        self._page_size = page_size
        self._timeout_s = timeout_s

    def fetch_all(
        self,
        object_type: str,
        constraints: Iterable[Constraint] = (),
    ) -> FetchResult:
        """
        Trae TODOS los registros de un tipo, página por página.

        Termina cuando el servidor reporta `remaining == 0` o cuando una
        página llega vacía (evita loops infinitos si la paginación de Bubble
        queda inconsistente). Si una página falla se devuelve lo acumulado
        junto con el error.
        """
        url = f"{self._base_url}/obj/{object_type}"
        constraints_param = build_constraints_param(constraints)
        records: list[dict[str, Any]] = []
        cursor = 0
        remaining = 1

        while remaining > 0:
            params: dict[str, Any] = {"limit": self._page_size, "cursor": cursor}
            if constraints_param:
                params["constraints"] = constraints_param

            try:
                payload = self._request_json("GET", url, params=params)
            except SourceFetchError as e:
                error = f"Bubble fetch {object_type} page {cursor}: {e.message}"
                logger.warning(error)
                return FetchResult(records=records, error=error)

            response = payload.get("response") or {}
            results = response.get("results") or []
            remaining = _as_int(response.get("remaining"))
            records.extend(results)
            cursor += len(results)

            if not results:
                break

        logger.info(f"Bubble fetch {object_type}: {len(records)} registro(s)")
        return FetchResult(records=records)

    def validate_session_token(self, token: str) -> Optional[str]:
        """
        Valida un token de sesión legacy contra el workflow `validate_token`.

        Returns:
            El id Bubble del usuario dueño del token, o None si Bubble no lo
            identifica.

        Raises:
            SourceFetchError: fallo de red o respuesta no-2xx.
        """
        payload = self._request_json(
            "POST",
            f"{self._base_url}/wf/validate_token",
            json_body={"token": token},
        )
        response = payload.get("response") or {}
        user_id = response.get("user_id") or response.get("user")
        if isinstance(user_id, dict):
            user_id = user_id.get("unique_id") or user_id.get("_id")
        return str(user_id) if user_id else None

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Request HTTP rate-limited, sin reintentos.

        Cualquier error de transporte, status no-2xx o body no-JSON se
        traduce a SourceFetchError.
        """
        headers = {
            "Authorization": f"Bearer {self._creds.token}",
            "Content-Type": "application/json",
        }
        self._limiter.wait()

        try:
            resp = self._session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            raise SourceFetchError(str(e)) from e

        if not 200 <= resp.status_code < 300:
            raise SourceFetchError(
                f"HTTP {resp.status_code} - {(resp.text or '')[:200]}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise SourceFetchError(f"Respuesta no-JSON de Bubble: {e}") from e
        if not isinstance(payload, dict):
            raise SourceFetchError("Respuesta de Bubble con formato inesperado")
        return payload


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
