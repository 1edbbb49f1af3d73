from pydantic_settings import BaseSettings
from typing import List, Optional, Union
from pydantic import field_validator, model_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_PREFIX: str = ""
    PROJECT_NAME: str = "CV Intake Pipeline"
    MAX_PAGE_SIZE: int = 500

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "candidates_db"
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (for Celery task queue)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    DISPATCH_MAX_WORKERS: int = 4

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # Blob storage
    USE_S3: bool = False
    S3_BUCKET_NAME: str = ""
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    LOCAL_STORAGE_DIR: str = "uploads"

    # Intake
    MAX_UPLOAD_SIZE_MB: int = 10

    @property
    def MAX_UPLOAD_SIZE_BYTES(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    # OpenAI Settings
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.2
    EXTRACTION_TIMEOUT_SECONDS: float = 60.0
    GRADING_MODE: str = "llm"  # "llm" or "rules"

    # Workflow engine
    WORKFLOW_MAX_ATTEMPTS: int = 3
    WORKFLOW_BACKOFF_BASE_SECONDS: float = 1.0
    WORKFLOW_BACKOFF_MAX_SECONDS: float = 30.0
    WORKFLOW_STALE_AFTER_SECONDS: int = 600

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = False

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("GRADING_MODE")
    @classmethod
    def validate_grading_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("llm", "rules"):
            raise ValueError("GRADING_MODE must be 'llm' or 'rules'")
        return v

    @model_validator(mode="after")
    def validate_stale_threshold(self) -> "Settings":
        """A live run must not look stale while one step is still retrying"""
        worst_case = self.EXTRACTION_TIMEOUT_SECONDS * self.WORKFLOW_MAX_ATTEMPTS + sum(
            min(self.WORKFLOW_BACKOFF_BASE_SECONDS * 2 ** (attempt - 1), self.WORKFLOW_BACKOFF_MAX_SECONDS)
            for attempt in range(1, self.WORKFLOW_MAX_ATTEMPTS)
        )
        if self.WORKFLOW_STALE_AFTER_SECONDS <= worst_case:
            raise ValueError(
                f"WORKFLOW_STALE_AFTER_SECONDS must exceed the worst-case step time ({worst_case:.0f}s)"
            )
        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
