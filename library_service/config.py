import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


DEFAULT_JWT_SECRET = "default-jwt-secret-change-in-production"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("LIBRARY_NAME", "Library Management System")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./library.db")

    # Security
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", DEFAULT_JWT_SECRET)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "60"))

    # CORS
    client_url: str = os.getenv("CLIENT_URL", "http://localhost:3000")

    # Overdue checks (interval in minutes)
    overdue_checks_enabled: bool = _env_bool("OVERDUE_CHECKS_ENABLED", "true")
    overdue_check_interval: int = int(os.getenv("OVERDUE_CHECK_INTERVAL", "60"))
    sweep_batch_size: int = int(os.getenv("SWEEP_BATCH_SIZE", "500"))

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "25"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret_key == DEFAULT_JWT_SECRET


settings = Settings()
