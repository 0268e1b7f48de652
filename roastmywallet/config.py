"""
Configuration for the RoastMyWallet API
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    """Runtime settings, read once from the environment"""

    # Database
    database_url: str = "sqlite:///./roastmywallet.db"

    # LLM Configuration
    groq_api_key: str = ""
    llm_model: str = "llama-3.3-70b-versatile"
    vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    temperature: float = 0.7
    max_tokens: int = 1000

    # Usage gating
    free_upload_limit: int = 1
    max_import_rows: int = 100
    pdf_text_limit: int = 8000

    # Billing
    billing_webhook_secret: str = ""
    billing_connector_url: str = ""
    billing_connector_token: str = ""
    billing_credential_ttl: int = 0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables"""
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./roastmywallet.db"),
            groq_api_key=os.getenv("GROQ_API_KEY", ""),
            llm_model=os.getenv("LLM_MODEL", "llama-3.3-70b-versatile"),
            vision_model=os.getenv("VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "1000")),
            free_upload_limit=int(os.getenv("FREE_UPLOAD_LIMIT", "1")),
            max_import_rows=int(os.getenv("MAX_IMPORT_ROWS", "100")),
            pdf_text_limit=int(os.getenv("PDF_TEXT_LIMIT", "8000")),
            billing_webhook_secret=os.getenv("BILLING_WEBHOOK_SECRET", ""),
            billing_connector_url=os.getenv("BILLING_CONNECTOR_URL", ""),
            billing_connector_token=os.getenv("BILLING_CONNECTOR_TOKEN", ""),
            billing_credential_ttl=int(os.getenv("BILLING_CREDENTIAL_TTL", "0")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global settings instance
settings = Settings.from_env()
