from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    database_echo: bool = Field(False, alias="DATABASE_ECHO")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    # Role selector for demos: issues tokens without credentials. Never enable in production.
    demo_login_enabled: bool = Field(False, alias="DEMO_LOGIN_ENABLED")

    # Remita gateway. Credentials stay on the server; only the public key reaches the widget.
    remita_base_url: str = Field("https://demo.remita.net", alias="REMITA_BASE_URL")
    remita_merchant_id: str = Field(..., alias="REMITA_MERCHANT_ID")
    remita_service_type_id: str = Field(..., alias="REMITA_SERVICE_TYPE_ID")
    remita_api_key: str = Field(..., alias="REMITA_API_KEY")
    remita_public_key: Optional[str] = Field(None, alias="REMITA_PUBLIC_KEY")
    remita_widget_script_url: str = Field(
        "https://demo.remita.net/payment/v1/remita-pay-inline.bundle.js",
        alias="REMITA_WIDGET_SCRIPT_URL",
    )
    remita_timeout_seconds: float = Field(30.0, alias="REMITA_TIMEOUT_SECONDS")

    # Automatic verification loop
    verify_pending_delay_seconds: float = Field(5.0, alias="VERIFY_PENDING_DELAY_SECONDS")
    verify_error_delay_seconds: float = Field(3.0, alias="VERIFY_ERROR_DELAY_SECONDS")
    verify_max_transport_errors: int = Field(3, alias="VERIFY_MAX_TRANSPORT_ERRORS")
    verify_ceiling_seconds: float = Field(120.0, alias="VERIFY_CEILING_SECONDS")

    # Session registry housekeeping
    payment_session_idle_seconds: float = Field(1800.0, alias="PAYMENT_SESSION_IDLE_SECONDS")
    payment_session_completed_seconds: float = Field(300.0, alias="PAYMENT_SESSION_COMPLETED_SECONDS")
    payment_session_sweep_seconds: float = Field(60.0, alias="PAYMENT_SESSION_SWEEP_SECONDS")

    default_payer_email: str = Field("student@schoolpay.com", alias="DEFAULT_PAYER_EMAIL")
    default_payer_phone: str = Field("08012345678", alias="DEFAULT_PAYER_PHONE")
    school_name: str = Field("School Name Academy", alias="SCHOOL_NAME")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
