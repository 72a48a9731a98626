from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Vilo Refunds API"
    LOG_LEVEL: str = "INFO"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "refunds@vilo.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""
    EMAIL_TIMEOUT_SECONDS: int = 10

    FRONTEND_URL: str = "http://localhost:5173"  # links in guest/admin emails
    API_PUBLIC_URL: str = ""  # e.g. https://api.vilo.co.za - for local document download links

    # Refund document + credit memo storage
    DOCUMENT_LOCAL_DIR: str = "./data/documents"
    GCS_BUCKET_NAME: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str = ""
    DOCUMENT_MAX_BYTES: int = 10 * 1024 * 1024
    DOCUMENT_ALLOWED_TYPES: str = "application/pdf,image/png,image/jpeg,image/jpg"
    DOCUMENT_URL_TTL_MINUTES: int = 60

    # Rejections must always explain themselves to the guest
    REJECT_NOTES_MIN_LENGTH: int = 1

    # Payment gateways. Refund calls are never retried automatically.
    GATEWAY_TIMEOUT_SECONDS: int = 25

    # Cybersource (HTTP Signature / REST Payments)
    CYBS_ENV: str = "test"  # test|prod
    CYBS_HOST: str = "apitest.cybersource.com"
    CYBS_MERCHANT_ID: str = ""
    CYBS_KEY_ID: str = ""
    CYBS_SECRET_KEY_B64: str = ""
    CYBS_SANDBOX: bool = False  # If True, skip real Cybersource call and return mock success (for dev when gateway not ready)

    # Paystack
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_SANDBOX: bool = False

    def allowed_document_types(self) -> list[str]:
        return [t.strip().lower() for t in self.DOCUMENT_ALLOWED_TYPES.split(",") if t.strip()]


settings = Settings()
