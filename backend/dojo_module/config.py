import os
from dataclasses import dataclass

from dotenv import load_dotenv


BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(dotenv_path=os.path.join(BACKEND_DIR, ".env"))

DATA_DIR = os.getenv("DATA_DIR", os.path.join(BACKEND_DIR, "data"))
DB_PATH = os.getenv("DOJO_DB", os.path.join(DATA_DIR, "dojo.db"))
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173,http://localhost:8000"


def split_origins(value: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in value.split(",") if origin.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")
    uploads_dir: str = os.getenv("UPLOADS_DIR", os.path.join(DATA_DIR, "uploads"))
    admin_token: str | None = os.getenv("ADMIN_TOKEN") or None
    db_timeout_seconds: int = int(os.getenv("DOJO_DB_TIMEOUT", "30"))
    cors_origins: tuple[str, ...] = split_origins(os.getenv("DOJO_CORS_ORIGINS", DEFAULT_CORS_ORIGINS))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("BACKEND_HOST", "127.0.0.1")
    port: int = int(os.getenv("BACKEND_PORT", "8000"))
    reload: bool = os.getenv("BACKEND_RELOAD", "false").lower() == "true"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
