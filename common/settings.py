import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    backend_url: str = os.getenv("BACKEND_URL", "http://localhost:54321")
    backend_anon_key: str = os.getenv("BACKEND_ANON_KEY", "dev-anon-key")
    backend_timeout_seconds: float = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))

    session_issuer: str = os.getenv("SESSION_ISSUER", "paysim-portal")
    session_secret: str = os.getenv("SESSION_SECRET", "dev-secret-change")
    session_ttl_seconds: int = int(os.getenv("SESSION_TTL_SECONDS", "3600"))
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "paysim_session")

    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "1.5"))
    poll_max_attempts: int = int(os.getenv("POLL_MAX_ATTEMPTS", "30"))
    realtime_poll_seconds: float = float(os.getenv("REALTIME_POLL_SECONDS", "1.0"))
    dashboard_payment_limit: int = int(os.getenv("DASHBOARD_PAYMENT_LIMIT", "50"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
