import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    api_key: Optional[str] = os.getenv("API_KEY")
    require_api_key: bool = _env_flag("REQUIRE_API_KEY")
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "lending.db")
    database_pool_size: int = int(os.getenv("DATABASE_POOL_SIZE", "10"))
    database_pool_timeout: float = float(os.getenv("DATABASE_POOL_TIMEOUT", "5"))
    database_busy_timeout_ms: int = int(os.getenv("DATABASE_BUSY_TIMEOUT_MS", "5000"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Lending API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_flag("DEBUG")


settings = Settings()
