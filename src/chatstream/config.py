"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Upstream chat service returning either a full reply or a token stream
    chat_backend_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:3000/api/chat"),
        validation_alias=AliasChoices("CHAT_BACKEND_URL", "chat_backend_url"),
    )
    chat_backend_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("CHAT_BACKEND_TIMEOUT", "chat_backend_timeout"),
        ge=1,
    )

    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        validation_alias=AliasChoices("EMBEDDING_MODEL", "embedding_model"),
    )

    # Pinecone-style index host, e.g. https://my-index-abc123.svc.pinecone.io
    vector_db_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("VECTOR_DB_URL", "vector_db_url"),
    )
    vector_db_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("VECTOR_DB_API_KEY", "vector_db_api_key"),
    )
    vector_db_timeout: float = Field(
        default=30.0,
        validation_alias=AliasChoices("VECTOR_DB_TIMEOUT", "vector_db_timeout"),
        ge=1,
    )

    tts_model: str = Field(
        default="tts-1",
        validation_alias=AliasChoices("TTS_MODEL", "tts_model"),
    )
    tts_voice: str = Field(
        default="alloy",
        validation_alias=AliasChoices("TTS_VOICE", "tts_voice"),
    )
    tts_response_format: str = Field(
        default="mp3",
        validation_alias=AliasChoices("TTS_RESPONSE_FORMAT", "tts_response_format"),
    )

    default_top_k: int = Field(
        default=3,
        ge=1,
        le=100,
        validation_alias=AliasChoices("DEFAULT_TOP_K", "default_top_k"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
