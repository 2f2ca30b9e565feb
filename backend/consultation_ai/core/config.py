import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    """Runtime settings for the consultation pipeline, loaded once at startup."""

    # OpenAI / Azure OpenAI
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
    AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
    AZURE_OPENAI_API_KEY: str = os.getenv("AZURE_OPENAI_API_KEY", "")
    AZURE_OPENAI_API_VERSION: str = os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview")

    AI_MODEL: str = os.getenv("AI_MODEL", "gpt-4-turbo-preview")
    TRANSCRIPTION_MODEL: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

    # Gateway retry policy
    AI_MAX_ATTEMPTS: int = 3
    AI_RETRY_BACKOFF_SECONDS: float = 2.0

    # Generation parameters
    ANALYSIS_TEMPERATURE: float = 0.3
    ANALYSIS_MAX_TOKENS: int = 3000
    KEY_POINTS_TEMPERATURE: float = 0.3
    KEY_POINTS_MAX_TOKENS: int = 800
    DIARIZATION_MAX_TOKENS: int = 4096
    PRESCRIPTION_TEMPERATURE: float = 0.3
    PRESCRIPTION_MAX_TOKENS: int = 1500

    # Storage
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "consultations.sqlite3")
    DATABASE_TIMEOUT_SECONDS: float = 10.0

    # Per-request deadline for /analyze; None lets the pipeline run to completion
    PIPELINE_TIMEOUT_SECONDS: Optional[float] = None

    CORS_ORIGINS: List[str] = [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        case_sensitive = True


settings = Settings()
