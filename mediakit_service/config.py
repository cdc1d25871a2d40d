"""
Configuration loader for the mediakit service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear. Components
receive a `Settings` instance at construction instead of reading globals.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PDF_QUALITY_LEVELS = ("prepress", "printer", "default", "ebook", "screen")
PDF_METHODS = ("ghostscript", "qpdf")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Remote providers
    removebg_api_key: Optional[str] = None
    backgrounds_api_key: Optional[str] = None
    clipdrop_api_key: Optional[str] = None
    removebg_url: str = "https://api.remove.bg/v1.0/removebg"
    backgrounds_url: str = "https://api.backgroundremover.ai/v1/remove"
    clipdrop_url: str = "https://clipdrop-api.co/remove-background/v1"

    # Local matting model
    local_model_path: Optional[Path] = None
    local_model_name: str = "modnet"
    local_max_long_edge: int = 1024

    # Orchestration
    provider_priority: str = "local,removebg,backgrounds,clipdrop"
    fallback_to_local: bool = True
    max_input_bytes: int = Field(10 * 1024 * 1024, gt=0)
    basic_transparency_threshold: int = Field(240, ge=0, le=255)

    # Batching
    batch_concurrency: int = 3
    batch_delay_seconds: float = Field(1.0, ge=0.0)
    batch_max_files: int = Field(10, gt=0)

    # API
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    # PDF compression
    pdf_temp_dir: Path = Path("./temp")
    pdf_method: str = "ghostscript"
    pdf_start_quality: str = "ebook"
    pdf_target_max_bytes: int = Field(5 * 1024 * 1024, gt=0)
    ghostscript_binary: str = "gs"
    qpdf_binary: str = "qpdf"
    tool_timeout_seconds: int = 180

    # Cloudflare R2 / S3-compatible storage
    r2_endpoint: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: Optional[str] = None
    r2_public_base_url: Optional[str] = None

    @field_validator("batch_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("BATCH_CONCURRENCY must be at least 1")
        return v

    @field_validator("pdf_method")
    @classmethod
    def validate_pdf_method(cls, v: str) -> str:
        v = v.lower()
        if v not in PDF_METHODS:
            raise ValueError("PDF_METHOD must be one of ghostscript|qpdf")
        return v

    @field_validator("pdf_start_quality")
    @classmethod
    def validate_pdf_quality(cls, v: str) -> str:
        v = v.lower()
        if v not in PDF_QUALITY_LEVELS:
            raise ValueError("PDF_START_QUALITY must be one of " + "|".join(PDF_QUALITY_LEVELS))
        return v

    def priority_list(self) -> List[str]:
        """Provider priority as an ordered list of keys."""
        return [p.strip() for p in self.provider_priority.split(",") if p.strip()]

    def storage_configured(self) -> bool:
        required = [
            self.r2_endpoint,
            self.r2_access_key_id,
            self.r2_secret_access_key,
            self.r2_bucket_name,
        ]
        return all(v for v in required)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
