from __future__ import annotations
from functools import lru_cache
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PRODUCTION = "production"


class Settings(BaseSettings):
    # ----------------
    # Core / Database
    # ----------------
    database_url: str = Field("sqlite:///loopmail.db", alias="DATABASE_URL")
    env: str = Field("development", alias="ENV")   # production | staging | development ...

    # ----------------
    # SMTP
    # ----------------
    smtp_host: str = Field("localhost", alias="SMTP_HOST")
    smtp_port: int = Field(1025, alias="SMTP_PORT")
    smtp_sender: str = Field("noreply@clothingloop.org", alias="SMTP_SENDER")
    smtp_pass: str = Field("", alias="SMTP_PASS")
    # accept any server certificate on STARTTLS; keep off outside of local testing
    smtp_tls_skip_verify: bool = Field(False, alias="SMTP_TLS_SKIP_VERIFY")
    smtp_timeout: float = Field(30.0, alias="SMTP_TIMEOUT")

    # ----------------
    # Mail content / routing
    # ----------------
    product_name: str = Field("The Clothing Loop", alias="MAIL_PRODUCT_NAME")
    sink_address: str = Field("hello@clothingloop.org", alias="MAIL_SINK_ADDRESS")
    contact_emails_csv: str = Field("hello@clothingloop.org", alias="CONTACT_EMAILS")

    @property
    def contact_emails(self) -> List[str]:
        return _split_csv(self.contact_emails_csv)

    @property
    def is_production(self) -> bool:
        return self.env.strip().casefold() == PRODUCTION

    # ----------------
    # API
    # ----------------
    api_key: Optional[str] = Field(None, alias="API_KEY")
    cors_allow_origins_csv: str = Field("*", alias="CORS_ALLOW_ORIGINS")

    @property
    def cors_allow_origins(self) -> List[str]:
        return _split_csv(self.cors_allow_origins_csv) or ["*"]

    # ----------------
    # Logging
    # ----------------
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field("logs/loopmail.log", alias="LOG_FILE")

    # ----------------
    # Pydantic settings
    # ----------------
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

def _split_csv(s: str | None) -> List[str]:
    # contact lists historically used ';' as separator
    if not s:
        return []
    return [x.strip() for x in s.replace(";", ",").split(",") if x.strip()]

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
