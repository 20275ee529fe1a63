from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración del servicio de firmas
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Aplicación
    app_name: str = "Servicio de Integridad de Firmas"
    debug: bool = False
    log_level: str = "INFO"

    # Base de datos
    database_url: str = "postgresql://postgres:root@db:5432/firmas-db"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    # PIN
    pin_hash_rounds: int = 12
    require_current_pin_on_change: bool = True
    reject_trivial_pins: bool = True

    # Tokens de firma
    signature_token_secret: str = "change-me-in-production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
