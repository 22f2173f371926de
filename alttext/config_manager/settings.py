"""Pydantic models and helper utilities for configuration values."""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from alttext import logging_manager
from alttext.models import DuplicatePolicy, GenerationConfig

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_BATCH_SIZE,
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_INLINE_BYTES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MAX_WORDS,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_REVIEW_THRESHOLD,
    DEFAULT_STORAGE_RELATIVE,
    DEFAULT_TEMPERATURE,
    DEFAULT_TONE,
    MAX_BATCH_SIZE,
    MIN_MAX_WORDS,
)

logger = logging_manager.get_logger().getChild("config")


class AltTextSettings(BaseModel):
    """Typed representation of the application configuration."""

    model_config = ConfigDict(extra="ignore")

    api_key: Optional[SecretStr] = None
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    language: str = DEFAULT_LANGUAGE
    tone: str = DEFAULT_TONE
    max_words: int = DEFAULT_MAX_WORDS
    custom_prompt: str = ""
    dry_run: bool = False
    include_image: bool = True
    enable_on_upload: bool = True
    force_overwrite: bool = False
    review_enabled: bool = True
    review_model: Optional[str] = None
    review_threshold: int = DEFAULT_REVIEW_THRESHOLD
    max_inline_bytes: int = DEFAULT_MAX_INLINE_BYTES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.VARY
    max_rate_limit_retries: int = 3
    token_alert_threshold: int = 0
    notify_webhook_url: Optional[str] = None
    storage_dir: str = str(DEFAULT_STORAGE_RELATIVE)
    queue_batch_size: int = DEFAULT_BATCH_SIZE
    queue_tick_delay_seconds: float = 2.0
    watchdog_interval_seconds: float = 60.0
    watchdog_stall_seconds: float = 90.0
    debug: bool = False

    @field_validator("max_words")
    @classmethod
    def _clamp_max_words(cls, value: int) -> int:
        return max(MIN_MAX_WORDS, int(value))

    @field_validator("review_threshold")
    @classmethod
    def _clamp_threshold(cls, value: int) -> int:
        return min(100, max(0, int(value)))

    @field_validator("queue_batch_size")
    @classmethod
    def _clamp_batch(cls, value: int) -> int:
        return min(MAX_BATCH_SIZE, max(1, int(value)))

    @field_validator("token_alert_threshold", "max_inline_bytes", "max_rate_limit_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, int(value))

    def api_key_value(self) -> Optional[str]:
        if self.api_key is None:
            return None
        value = self.api_key.get_secret_value().strip()
        return value or None

    def to_generation_config(self) -> GenerationConfig:
        """Return the immutable snapshot handed to each orchestration call."""

        return GenerationConfig(
            model=self.model,
            language=self.language,
            tone=self.tone,
            max_words=self.max_words,
            custom_prompt=self.custom_prompt,
            dry_run=self.dry_run,
            include_image=self.include_image,
            api_key=self.api_key_value(),
            api_url=self.api_url,
            review_enabled=self.review_enabled,
            review_model=self.review_model,
            review_threshold=self.review_threshold,
            max_inline_bytes=self.max_inline_bytes,
            request_timeout=self.request_timeout,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            duplicate_policy=self.duplicate_policy,
        )


class EnvironmentOverrides(BaseSettings):
    """Configuration overrides sourced from environment variables."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_API_KEY", "OPENAI_API_KEY")
    )
    api_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_API_URL")
    )
    model: Optional[str] = Field(default=None, validation_alias=AliasChoices("ALTTEXT_MODEL"))
    language: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_LANGUAGE")
    )
    dry_run: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_DRY_RUN")
    )
    include_image: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_INCLUDE_IMAGE")
    )
    review_enabled: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_REVIEW_ENABLED")
    )
    review_model: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_REVIEW_MODEL")
    )
    review_threshold: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_REVIEW_THRESHOLD")
    )
    token_alert_threshold: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_TOKEN_ALERT_THRESHOLD")
    )
    notify_webhook_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_NOTIFY_WEBHOOK_URL")
    )
    storage_dir: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ALTTEXT_STORAGE_DIR")
    )
    debug: Optional[bool] = Field(default=None, validation_alias=AliasChoices("ALTTEXT_DEBUG"))


def load_environment_overrides() -> Dict[str, Any]:
    """Return configuration overrides sourced from environment variables."""

    try:
        overrides = EnvironmentOverrides()
    except ValidationError as exc:
        logger.warning(
            "Invalid environment configuration detected; using defaults.",
            extra={"event": "config.env.validation_error", "error": str(exc)},
        )
        return {}
    return overrides.model_dump(exclude_none=True)


def apply_settings_updates(settings: AltTextSettings, updates: Dict[str, Any]) -> AltTextSettings:
    """Return a copy of ``settings`` validated with ``updates`` applied."""

    if not updates:
        return settings
    payload = settings.model_dump()
    payload.update(updates)
    return AltTextSettings.model_validate(payload)


__all__ = [
    "AltTextSettings",
    "EnvironmentOverrides",
    "apply_settings_updates",
    "load_environment_overrides",
]
