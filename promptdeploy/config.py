"""Application settings using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "PromptDeploy"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # ==========================================================================
    # Database (job-state store)
    # ==========================================================================
    database_url: str = Field(default="sqlite+aiosqlite:///./promptdeploy.db")
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ==========================================================================
    # LLM Providers
    # ==========================================================================
    # Anthropic
    anthropic_api_key: str = Field(default="")
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    anthropic_version: str = "2023-06-01"

    # Any OpenAI-compatible chat endpoint (DeepSeek, Moonshot, OpenAI, ...)
    openai_api_key: str = Field(default="")
    openai_base_url: str = "https://api.deepseek.com"
    openai_model: str = "deepseek-chat"

    # Model Routing
    primary_provider: Literal["anthropic", "openai"] = "anthropic"
    fallback_provider: Literal["anthropic", "openai"] | None = "openai"
    llm_timeout_seconds: float = 300.0
    generation_max_tokens: int = 8192
    generation_temperature: float = 0.7

    # ==========================================================================
    # Sandbox
    # ==========================================================================
    sandbox_provider: Literal["local"] = "local"
    sandbox_root: str = Field(default="./.sandboxes")
    sandbox_timeout_seconds: int = 600  # 10 minutes of environment lifetime
    sandbox_public_host: str = "localhost"
    public_url_scheme: Literal["http", "https"] = "http"

    # ==========================================================================
    # Pipeline
    # ==========================================================================
    project_dir: str = "app"
    app_port: int = 3000
    install_timeout_seconds: int = 300
    build_timeout_seconds: int = 300
    serve_grace_seconds: float = 2.0
    serve_ready_timeout_seconds: float = 30.0
    serve_probe_interval_seconds: float = 1.0
    serve_ready_marker: str = "Ready"
    install_command: str = "npm install"
    build_command: str = "npm run build"
    serve_command: str = "npm run dev"
    channel_retention_seconds: float = 3600.0  # keep published state after a job ends

    # ==========================================================================
    # Poller
    # ==========================================================================
    poll_interval_seconds: float = 3.0
    poll_max_seconds: float = 900.0  # 15 minutes

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_base_url: str = "http://localhost:8000"
    cors_origins: list[str] = Field(default=["http://localhost:3000"])


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
