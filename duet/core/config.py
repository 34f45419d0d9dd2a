import os
from pydantic import BaseModel


def _origins() -> list[str]:
    # e.g., ALLOWED_ORIGINS="http://localhost:5173,https://duet.example"
    env_origins = os.getenv("ALLOWED_ORIGINS")
    if env_origins:
        return [o.strip() for o in env_origins.split(",") if o.strip()]
    return ["http://localhost:5173", "http://127.0.0.1:5173"]


class Settings(BaseModel):
    service_name: str = os.getenv("SERVICE_NAME", "duet")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # "local" = self-hosted gateway (SQLAlchemy + storage dir), "supabase" = hosted BaaS
    backend: str = os.getenv("BACKEND", "local")

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./duet.db")
    storage_dir: str = os.getenv("STORAGE_DIR", "./storage")
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_anon_key: str = os.getenv("SUPABASE_ANON_KEY", "")
    http_timeout_sec: float = float(os.getenv("HTTP_TIMEOUT_SEC", "10.0"))

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret")
    jwt_issuer: str = os.getenv("JWT_ISSUER", "https://auth.duet.local")
    jwt_audience: str = os.getenv("JWT_AUDIENCE", "duet.api")
    jwt_ttl_minutes: int = int(os.getenv("JWT_TTL_MINUTES", str(60 * 24 * 30)))

    # session + last-activity files live here
    state_dir: str = os.getenv("STATE_DIR", "~/.config/duet")
    idle_timeout_days: int = int(os.getenv("IDLE_TIMEOUT_DAYS", "7"))

    weekly_window_days: int = int(os.getenv("WEEKLY_WINDOW_DAYS", "7"))
    weekly_top_limit: int = int(os.getenv("WEEKLY_TOP_LIMIT", "5"))

    allowed_origins: list[str] = _origins()


settings = Settings()
