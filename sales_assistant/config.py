from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    env: str = Field(default="dev", alias="APP_ENV")
    debug: bool = Field(default=False, alias="APP_DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    engine_config_path: Path = Field(
        default=CONFIG_DIR / "engine_config.yaml", alias="ENGINE_CONFIG_PATH"
    )
    knowledge_path: Path = Field(default=CONFIG_DIR / "knowledge.yaml", alias="KNOWLEDGE_PATH")
    responses_path: Path = Field(default=CONFIG_DIR / "responses.yaml", alias="RESPONSES_PATH")

    # Session lifetime
    session_ttl_seconds: float = Field(default=1800.0, alias="SESSION_TTL_SECONDS")
    session_history_limit: int = Field(default=20, alias="SESSION_HISTORY_LIMIT")
    session_sweep_interval_seconds: float = Field(
        default=600.0, alias="SESSION_SWEEP_INTERVAL_SECONDS"
    )
    session_soft_memory_products: int = Field(default=3, alias="SESSION_SOFT_MEMORY_PRODUCTS")
    session_soft_memory_ttl_seconds: float = Field(
        default=7 * 24 * 3600.0, alias="SESSION_SOFT_MEMORY_TTL_SECONDS"
    )
    session_carry_customer_type: bool = Field(default=True, alias="SESSION_CARRY_CUSTOMER_TYPE")

    # Intent scoring
    intent_confidence_threshold: float = Field(default=0.25, alias="INTENT_CONFIDENCE_THRESHOLD")
    intent_fuzzy_threshold: float = Field(default=0.75, alias="INTENT_FUZZY_THRESHOLD")
    intent_context_boost: float = Field(default=1.3, alias="INTENT_CONTEXT_BOOST")
    intent_max_phrasings: int = Field(default=8, alias="INTENT_MAX_PHRASINGS")

    # Replies
    response_variant_window: int = Field(default=5, alias="RESPONSE_VARIANT_WINDOW")
    default_quantity_unit: str = Field(default="carton", alias="DEFAULT_QUANTITY_UNIT")
    fallback_contact_phone: str = Field(default="01155501111", alias="FALLBACK_CONTACT_PHONE")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
