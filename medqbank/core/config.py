# medqbank/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, SecretStr
from typing import List, Optional
from functools import lru_cache


class DataBaseConfig(BaseModel):
    DB_HOST: str = Field(..., description="Database host")
    DB_PORT: int = Field(5432, description="Database port")
    DB_NAME: str = Field(..., description="Database name")
    DB_USER: str = Field(..., description="Database user")
    DB_PASSWORD: SecretStr = Field(..., description="Database password")  # SecretStr скрывает значение в логах
    DB_ECHO: bool = Field(False, description="Enable SQL echo")
    DB_POOL_SIZE: int = Field(5, description="Database pool size")
    DB_MAX_OVERFLOW: int = Field(10, description="Database max overflow")
    # Полный URL имеет приоритет над host/port (например sqlite+aiosqlite для тестов)
    DB_URL: Optional[str] = Field(None, description="Full SQLAlchemy URL override")

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD.get_secret_value()}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    naming_convention: dict[str, str] = {
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_N_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }


class AIConfig(BaseModel):
    """Azure OpenAI. Пустой ключ/endpoint/deployment = ИИ выключен."""
    AZURE_OPENAI_API_KEY: Optional[SecretStr] = Field(None, description="Azure OpenAI API key")
    AZURE_OPENAI_ENDPOINT: Optional[str] = Field(None, description="Azure OpenAI resource endpoint")
    AZURE_OPENAI_DEPLOYMENT: Optional[str] = Field(None, description="Chat deployment name")
    AZURE_OPENAI_API_VERSION: str = Field("2024-08-01-preview", description="Azure OpenAI API version")
    AI_TEMPERATURE: Optional[float] = Field(None, description="Sampling temperature (0-1.2)")
    AI_PRESENCE_PENALTY: Optional[float] = Field(None, description="Presence penalty (-2..2)")
    AI_FREQUENCY_PENALTY: Optional[float] = Field(None, description="Frequency penalty (-2..2)")
    AI_MAX_TOKENS: int = Field(8000, description="Default completion token budget")
    AI_LENGTH_RETRY_TOKENS: int = Field(16000, description="Token budget when retrying a truncated answer")
    AI_TIMEOUT: int = Field(120, description="AI request timeout in seconds")
    AI_MAX_ATTEMPTS: int = Field(3, description="Attempts on network errors")
    AI_BACKOFF_SECONDS: float = Field(0.4, description="Linear backoff step between attempts")
    AI_BATCH_SIZE: int = Field(8, description="MCQ rows per AI request")
    AI_QROC_BATCH_SIZE: int = Field(60, description="QROC rows per AI request")
    AI_CONCURRENCY: int = Field(1, description="Parallel AI requests")
    AI_RETRY_BATCH_SIZE: int = Field(4, description="Batch size for the permissive retry pass")
    AI_SINGLE_MODE: bool = Field(False, description="Send MCQ rows one by one")
    AI_EXPLANATION_STYLE: str = Field("student", description="student | prof")


class SecurityConfig(BaseModel):
    JWT_SECRET_KEY: SecretStr = Field(..., description="JWT secret key")
    JWT_ALGORITHM: str = Field("HS256", description="JWT algorithm")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(30, description="Access token expiration")
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(7, description="Refresh token expiration")
    # Задержки против перебора email/паролей (в тестах = 0)
    AUTH_MIN_DELAY: float = Field(0.5, description="Minimal login duration in seconds")
    AUTH_FAILURE_DELAY: float = Field(2.0, description="Extra delay on failed login")
    RATE_LIMIT_ENABLED: bool = Field(True, description="Enable slowapi route limits")


class ImportConfig(BaseModel):
    MAX_UPLOAD_BYTES: int = Field(50 * 1024 * 1024, description="Max spreadsheet size")
    VALIDATION_TTL_SECONDS: int = Field(3600, description="Lifetime of generated validation files")
    IMPORT_SESSION_TTL_SECONDS: int = Field(1800, description="Lifetime of finished import sessions")
    SSE_POLL_INTERVAL: float = Field(1.0, description="Progress stream polling interval")


class Settings(BaseSettings):
    app_name: str = Field("MedQBank", description="Application name")
    debug: bool = Field(False, description="Debug mode")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:3000",
        ],
        description="CORS origins"
    )

    db: DataBaseConfig
    security: SecurityConfig
    ai: AIConfig = Field(default_factory=AIConfig)
    imports: ImportConfig = Field(default_factory=ImportConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Кэшированный экземпляр настроек"""
    return Settings()


settings = get_settings()
