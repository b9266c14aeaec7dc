"""
Configuracion central del backend de migracion.
Gestiona variables de entorno y configuraciones globales.

Todo lo que el motor de migracion necesita (API de Bubble, Postgres destino,
limites del pipeline, verificacion de tokens) se lee de aqui; ningun modulo
del motor lee `os.environ` directamente.
"""
import json
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion de la aplicacion.
    Lee variables de entorno (o `.env`) y proporciona valores por defecto.
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="OPS Bubble Migration")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)
    CORS_ORIGINS: str = Field(default="*")

    # Base de datos destino - componentes separados
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="postgres")
    DATABASE_PASSWORD: str = Field(default="postgres")
    DATABASE_NAME: str = Field(default="postgres")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")

    # API de datos de Bubble (origen)
    BUBBLE_API_URL: str = Field(default="https://opsapp.co/version-test/api/1.1")
    BUBBLE_API_TOKEN: str = Field(default="")

    # Pipeline de migracion
    MIGRATION_PAGE_SIZE: int = Field(default=100)
    MIGRATION_MIN_REQUEST_INTERVAL_MS: int = Field(default=500)
    MIGRATION_REQUEST_TIMEOUT_S: float = Field(default=30.0)
    MIGRATION_SEED_PAGE_SIZE: int = Field(default=1000)
    MIGRATION_ERROR_LIST_CAP: int = Field(default=50)
    MIGRATION_PHASE_WORKERS: int = Field(default=1)
    MIGRATION_MODIFIED_FIELD: str = Field(default="Modified Date")

    # Verificacion del token del proveedor de identidad (Bearer)
    IDENTITY_TOKEN_SECRET: str = Field(default="change-this-secret-key-in-production")
    IDENTITY_TOKEN_ALGORITHMS: str = Field(default="HS256")
    IDENTITY_TOKEN_AUDIENCE: Optional[str] = Field(default=None)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/migration.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def identity_token_algorithms(self) -> List[str]:
        """Algoritmos aceptados, separados por coma en la variable de entorno."""
        return [a.strip() for a in self.IDENTITY_TOKEN_ALGORITHMS.split(",") if a.strip()]

    @computed_field
    @property
    def min_request_interval_s(self) -> float:
        return self.MIGRATION_MIN_REQUEST_INTERVAL_MS / 1000.0

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuracion
settings = Settings()
