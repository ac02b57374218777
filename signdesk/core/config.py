## signdesk/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the application
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"
    allowed_cors_urls: str = "http://localhost:3000"
    app_base_url: str = "http://localhost:3000"

    redis_host: str = "localhost"
    redis_port: str = "6379"
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    db_host: str = "localhost"
    db_user: str = "signdesk"
    db_password: str = ""
    db_database: str = "signdesk"
    db_port: int = 3306
    # Full SQLAlchemy async URL, takes precedence over the db_* fields
    database_url: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    aws_ses_sender_email: Optional[str] = None
    aws_pinpoint_application_id: Optional[str] = None
    aws_pinpoint_origination_number: Optional[str] = None
    s3_bucket_name: Optional[str] = None

    firebase_cred_path: str = ""

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Signing workflow
    signer_token_expire_days: int = 30
    document_url_ttl_seconds: int = 3600
    transition_max_retries: int = 3

    # OTP gate
    otp_brand_name: str = "SignDesk"
    otp_code_length: int = 6
    otp_validity_minutes: int = 5
    otp_rate_limit: int = 3
    otp_rate_window_seconds: int = 60
    otp_provider_timeout_seconds: int = 10
    access_grant_expire_hours: int = 24

    @property
    def async_db_url(self) -> str:
        """
        Async database URL
        """
        if self.database_url:
            return self.database_url
        return f"mysql+asyncmy://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_database}"

    @property
    def redis_url(self) -> str:
        """
        Redis connection URL
        """
        if self.redis_username and self.redis_password:
            return f"redis://{self.redis_username}:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}"

    @property
    def rate_limit_store(self) -> str:
        """
        Redis database holding the OTP request counters
        """
        return f"{self.redis_url}/0"

    @property
    def celery_broker(self) -> str:
        """
        Celery broker URL
        """
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """
        Celery backend URL
        """
        return f"{self.redis_url}/2"


settings = Settings()
