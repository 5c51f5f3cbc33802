from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # MongoDB connection. Both must be set for the API to reach a database.
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: Optional[str] = None

    JWT_SECRET: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    JWT_EXPIRES_IN_DAYS: int = 7
    BCRYPT_ROUNDS: int = 13
    EMAIL_VERIFICATION_HOURS: int = 24

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    CLIENT_URL: str = "http://localhost:5173"

    # Transactional email through the Resend HTTP API. Without a key the
    # mailer only logs what it would have sent.
    EMAILS_ENABLED: bool = True
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "onboarding@resend.dev"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    SCHEDULER_ENABLED: bool = True
    SETTLEMENT_INTERVAL_SECONDS: int = 300
    ENDING_SOON_INTERVAL_SECONDS: int = 3600
    ENDING_SOON_WINDOW_HOURS: int = 24

    DEFAULT_MIN_INCREMENT: float = 5

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        return self.is_production

    @property
    def cookie_samesite(self) -> str:
        # Cross-origin SPA in production needs SameSite=None (which requires Secure).
        return "none" if self.is_production else "lax"

    @property
    def origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
