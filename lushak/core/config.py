from typing import List, Optional

from pydantic import AliasChoices, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "LUSHAK Contact API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    SITE_NAME: str = "LUSHAK DATA SYSTEMS"

    # --- Environment & Debug ---
    ENVIRONMENT: str = "local"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # e.g. "logs/contact_api.log"

    # --- reCAPTCHA v3 ---
    RECAPTCHA_SECRET_KEY: Optional[SecretStr] = Field(default=None, validate_default=True)
    RECAPTCHA_SITE_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "RECAPTCHA_SITE_KEY", "NEXT_PUBLIC_RECAPTCHA_SITE_KEY"
        ),
    )
    RECAPTCHA_VERIFY_URL: str = "https://www.google.com/recaptcha/api/siteverify"
    RECAPTCHA_MIN_SCORE: float = 0.4
    RECAPTCHA_TIMEOUT: float = 5.0
    RECAPTCHA_ACTION: str = "contact_form"
    RECAPTCHA_EXPECTED_ACTION: Optional[str] = None

    # --- SMTP ---
    SMTP_HOST: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SMTP_HOST", "EMAIL_HOST")
    )
    SMTP_PORT: int = Field(
        default=587, validation_alias=AliasChoices("SMTP_PORT", "EMAIL_PORT")
    )
    SMTP_USER: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SMTP_USER", "EMAIL_USER")
    )
    SMTP_PASSWORD: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("SMTP_PASSWORD", "EMAIL_PASS")
    )
    SMTP_TIMEOUT: float = 30.0

    # --- Contact form ---
    CONTACT_RECIPIENT: Optional[str] = None  # defaults to SMTP_USER
    CONTACT_TIMEZONE: str = "Africa/Lagos"
    CONTACT_MAX_FILES: int = 8
    CONTACT_MAX_TOTAL_BYTES: int = 20 * 1024 * 1024

    # --- Rate Limiting / Proxy ---
    CONTACT_RATE_LIMIT: int = 5
    CONTACT_WINDOW_SECONDS: int = 60
    THROTTLE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    TRUSTED_PROXIES: List[str] = Field(
        default_factory=lambda: ["127.0.0.1", "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"],
        description="CIDR ranges of trusted reverse proxies for X-Forwarded-For",
    )

    # --- CORS ---
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=list,
        validate_default=True,
        description="List of allowed CORS origins. Configure in .env",
    )

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore", populate_by_name=True
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def default_allowed_origins(
        cls, v: Optional[List[str]], info: ValidationInfo
    ) -> Optional[List[str]]:
        env = info.data.get("ENVIRONMENT") or "local"
        if env != "production":
            if v is None:
                return ["http://localhost:3000"]
            if isinstance(v, str) and v.strip() in ("", "[]"):
                return ["http://localhost:3000"]
            if isinstance(v, list) and len(v) == 0:
                return ["http://localhost:3000"]
        return v

    @field_validator("RECAPTCHA_SECRET_KEY", mode="before")
    @classmethod
    def validate_recaptcha_secret(
        cls, v: Optional[SecretStr], info: ValidationInfo
    ) -> Optional[SecretStr]:
        # Without a secret every submission would be rejected as a bot
        env = info.data.get("ENVIRONMENT") or "local"
        if env not in ("local", "testing") and not v:
            raise ValueError(
                "RECAPTCHA_SECRET_KEY must be set in environment for non-local deployments"
            )
        return v

    @field_validator("THROTTLE_BACKEND", mode="after")
    @classmethod
    def validate_throttle_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("THROTTLE_BACKEND must be 'memory' or 'redis'")
        return v

    @property
    def contact_recipient(self) -> Optional[str]:
        return self.CONTACT_RECIPIENT or self.SMTP_USER


settings = Settings()
