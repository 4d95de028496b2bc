import json
from functools import lru_cache
from typing import List

from pydantic import AliasChoices, AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    stack_version: str = Field(default="1.0.0", alias="STACK_VERSION")

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("CORS_ORIGINS", "NEXT_PUBLIC_APP_URL"),
    )

    session_store_backend: str = Field(default="postgres", alias="SESSION_STORE_BACKEND")

    postgres_host: str = Field(default="postgres", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_db: str = Field(default="scribe", alias="POSTGRES_DB")
    postgres_user: str = Field(default="scribe", alias="POSTGRES_USER")
    postgres_password: str = Field(default="changeme", alias="POSTGRES_PASSWORD")
    db_pool_min_size: int = Field(default=2, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(default=10, alias="DB_POOL_MAX_SIZE")
    db_command_timeout: float = Field(default=10.0, alias="DB_COMMAND_TIMEOUT")

    otel_endpoint: AnyHttpUrl | None = Field(default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT")

    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    gemini_api_base: AnyHttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_BASE",
    )
    gemini_transcription_model: str = Field(default="gemini-1.5-flash", alias="GEMINI_TRANSCRIPTION_MODEL")
    gemini_summary_model: str = Field(default="gemini-1.5-pro", alias="GEMINI_SUMMARY_MODEL")
    gemini_timeout: float = Field(default=45.0, alias="GEMINI_TIMEOUT")
    gemini_retry_attempts: int = Field(default=3, alias="GEMINI_RETRY_ATTEMPTS")
    gemini_audio_mime_type: str = Field(default="audio/webm", alias="GEMINI_AUDIO_MIME_TYPE")

    audio_buffer_max_bytes: int = Field(default=10 * 1024 * 1024, alias="AUDIO_BUFFER_MAX_BYTES")
    ws_max_message_bytes: int = Field(default=10_000_000, alias="WS_MAX_MESSAGE_BYTES")
    download_url_template: str = Field(
        default="/sessions/{session_id}/download",
        alias="DOWNLOAD_URL_TEMPLATE",
    )

    def allowed_origins(self) -> List[str]:
        stripped = (self.cors_origins or "").strip()
        if not stripped:
            return []
        try:
            parsed = json.loads(stripped)
            if isinstance(parsed, list):
                return [str(origin) for origin in parsed]
        except json.JSONDecodeError:
            pass
        return [origin.strip() for origin in stripped.split(",") if origin.strip()]

    def download_url(self, session_id: str) -> str:
        return self.download_url_template.format(session_id=session_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
