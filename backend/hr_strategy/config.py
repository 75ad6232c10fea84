from typing import Optional, List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application configuration with environment variable support"""

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False
    LOG_LEVEL: str = "INFO"

    # Diagnosis provider settings
    OPENAI_API_KEY: Optional[str] = None
    MODEL_NAME: str = "gpt-4o-mini"
    CLASSIFICATION_TEMPERATURE: float = 0.1  # MBTI classification must be near-deterministic
    NARRATIVE_TEMPERATURE: float = 0.8
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    RESPONSE_LANGUAGE: str = "Japanese"

    # Spreadsheet settings
    EXPORT_FILE_NAME: str = "employee_data_export.xlsx"
    EXPORT_SHEET_NAME: str = "Employees"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

settings = Settings()
