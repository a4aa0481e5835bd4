import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}

class Settings:
    # App
    APP_NAME: str = os.getenv("APP_NAME", "librarydesk")
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    PORT: int = int(os.getenv("PORT", "8000"))

    # DB
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./library.db")
    SQL_ECHO: bool = _as_bool(os.getenv("SQL_ECHO"), False)

    # Préstamos
    LOAN_DAYS: int = int(os.getenv("LOAN_DAYS", "14"))
    DUE_SOON_DAYS: int = int(os.getenv("DUE_SOON_DAYS", "3"))
    LOW_STOCK_RATIO: float = float(os.getenv("LOW_STOCK_RATIO", "0.2"))

settings = Settings()
