from __future__ import annotations
import logging
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "capture_shop"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # EmailJS account triple plus the optional private key
    EMAILJS_API_URL: str = "https://api.emailjs.com/api/v1.0/email/send"
    EMAILJS_SERVICE_ID: str = ""
    EMAILJS_TEMPLATE_ID: str = ""
    EMAILJS_USER_ID: str = ""
    EMAILJS_ACCESS_TOKEN: Optional[str] = None

    SHOP_NAME: str = "Capture Shop"
    SHOP_EMAIL: str = "capturerings653@gmail.com"

    CHECKOUT_REDIRECT: str = "/shop"
    CHECKOUT_DISPLAY_DELAY: float = 3.0

    BCRYPT_ROUNDS: int = 12
    SESSION_TTL: float = 86400.0

    LOG_LEVEL: str = "INFO"
    PORT: int = 8000


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
