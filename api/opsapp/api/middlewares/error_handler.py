"""
Middleware para manejo centralizado de errores.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convierte cualquier excepcion no manejada en un 500 JSON generico."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            # Escapar llaves: loguru formatea el mensaje cuando recibe kwargs
            error_msg = str(exc).replace("{", "{{").replace("}", "}}")
            logger.error(f"Error no manejado en {request.method} {request.url.path}: {error_msg}", exc_info=True)

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "Internal server error",
                    "code": "INTERNAL_SERVER_ERROR",
                    "details": {}
                }
            )
