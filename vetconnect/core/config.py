from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS512"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Redis (token blacklist and auth rate limits)
    REDIS_URL: Optional[str] = None
    REDIS_SOCKET_TIMEOUT: float = 0.5

    # Auth endpoint rate limits (attempts per window, per client IP)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    LOGIN_RATE_LIMIT: int = 5
    REGISTER_RATE_LIMIT: int = 3
    PASSWORD_RESET_RATE_LIMIT: int = 2

    # Generic per-route limit for everything else (slowapi syntax)
    DEFAULT_RATE_LIMIT: str = "100/minute"

    # Reverse proxies allowed to set X-Forwarded-For / X-Real-IP
    TRUSTED_PROXIES: str = ""

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def trusted_proxies(self) -> set[str]:
        return {ip.strip() for ip in self.TRUSTED_PROXIES.split(",") if ip.strip()}

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY.encode()) < 32:
            errors.append("SECRET_KEY must be set and at least 32 bytes (256 bits)")
        if not self.ALGORITHM.startswith("HS"):
            errors.append("ALGORITHM must be an HMAC algorithm (HS256, HS384, HS512)")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if self.is_production and not self.REDIS_URL:
            errors.append("REDIS_URL must be set in production (token revocation and rate limiting)")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
